"""Pytest configuration and fixtures."""

import pytest
from pathlib import Path


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def lua_sample(fixtures_dir: Path) -> str:
    """Return contents of the Luraph-style Lua sample."""
    return (fixtures_dir / "luraph_sample.lua").read_text()


@pytest.fixture
def js_sample(fixtures_dir: Path) -> str:
    """Return contents of the obfuscated JavaScript sample."""
    return (fixtures_dir / "obfuscated_sample.js").read_text()


@pytest.fixture
def python_sample(fixtures_dir: Path) -> str:
    """Return contents of the readable Python sample."""
    return (fixtures_dir / "clean_sample.py").read_text()


@pytest.fixture
def simple_lua() -> str:
    """Return small readable Lua code for encoder tests."""
    return """local function greet(name)
  local message = "Hello, " .. name
  if name ~= "" then
    print(message)
  end
  local count = 0
  while count < 3 do
    count = count + 1
  end
  return message
end

greet("world")
"""


@pytest.fixture
def simple_js() -> str:
    """Return small readable JavaScript code for encoder tests."""
    return """function greet(name) {
  const message = "Hello, " + name;
  if (name !== "") {
    console.log(message);
  }
  let count = 0;
  while (count < 3) {
    count++;
  }
  return message;
}

greet("world");
"""
