"""CLI interface for codeunveil."""

import asyncio
import json
import logging
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from codeunveil import __version__
from codeunveil.config import Config
from codeunveil.core import CodeUnveilError, ConfidencePolicy, analyze as analyze_code, language_from_path, scan_threats
from codeunveil.core.pipeline import analyze_and_rewrite, encode
from codeunveil.encoder import ObfuscationConfig

console = Console()

# Debug logger
debug_logger = None
debug_log_file = None

_OUTPUT_MARKERS = ("deobfuscated", "obfuscated")


def setup_debug_logger(log_path: Optional[Path] = None) -> logging.Logger:
    """Setup debug logger for detailed logging.

    The handler sits on the package logger, so the library's own debug
    records land in the same file.
    """
    global debug_logger, debug_log_file

    if log_path is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(f"codeunveil_debug_{timestamp}.log")

    debug_log_file = log_path

    logger = logging.getLogger("codeunveil")
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []

    # File handler
    fh = logging.FileHandler(log_path, encoding='utf-8')
    fh.setLevel(logging.DEBUG)

    # Detailed format
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    debug_logger = logger
    return logger


def debug_log(level: str, message: str, data: dict = None):
    """Log debug message with optional structured data."""
    global debug_logger
    if debug_logger is None:
        return

    log_func = getattr(debug_logger, level.lower(), debug_logger.info)

    if data:
        data_str = json.dumps(data, ensure_ascii=False, indent=2, default=str)
        log_func(f"{message}\n{data_str}")
    else:
        log_func(message)


def resolve_language(file_path: Path, language: Optional[str], config: Config) -> str:
    """Explicit tag first, then the file suffix, then the configured default."""
    return language or language_from_path(file_path) or config.default_language


def output_path_for(file_path: Path, output_path: Optional[Path], config: Config, marker: str) -> Path:
    if output_path is not None:
        return output_path
    if config.output_dir is not None:
        return config.output_dir / file_path.name
    return file_path.with_suffix(f".{marker}{file_path.suffix}")


def _is_generated_output(file_path: Path) -> bool:
    parts = file_path.name.split(".")
    return any(marker in parts[1:-1] for marker in _OUTPUT_MARKERS)


def find_source_files(dir_path: Path) -> list[Path]:
    """Source files with a recognized suffix, skipping vendored trees and earlier outputs."""
    return [
        path for path in sorted(dir_path.rglob("*"))
        if path.is_file()
        and language_from_path(path) is not None
        and "node_modules" not in path.parts
        and not _is_generated_output(path)
    ]


def deobfuscate_file(
    file_path: Path,
    config: Config,
    output_path: Optional[Path] = None,
    language: Optional[str] = None,
    policy: Optional[str] = None,
) -> dict:
    """Deobfuscate one file and write the result.

    Args:
        file_path: Path to the source file
        config: Configuration
        output_path: Optional output path
        language: Language tag overriding suffix detection
        policy: Confidence policy overriding the configured one

    Returns:
        Processing statistics, including the report without code
    """
    language = resolve_language(file_path, language, config)
    source_code = file_path.read_text(encoding="utf-8")
    debug_log("info", f"Processing file: {file_path}", {"language": language, "bytes": len(source_code)})

    report = analyze_and_rewrite(source_code, language, policy=policy, config=config)

    target = output_path_for(file_path, output_path, config, "deobfuscated")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(report.output_code, encoding="utf-8")

    debug_log("info", f"Saved output to: {target}", {
        "step_log": list(report.analysis.step_log),
        "warnings": list(report.warnings),
        "errors": list(report.errors),
    })
    return {
        "file": str(file_path),
        "output": str(target),
        "language": report.analysis.language,
        "obfuscation_type": report.analysis.obfuscation_type,
        "confidence": report.analysis.confidence,
        "warnings": len(report.warnings),
        "errors": len(report.errors),
        "report": report.to_dict(include_code=False),
    }


def obfuscate_file(
    file_path: Path,
    config: Config,
    options: ObfuscationConfig,
    output_path: Optional[Path] = None,
    language: Optional[str] = None,
) -> dict:
    """Obfuscate one file and write the result."""
    language = resolve_language(file_path, language, config)
    source_code = file_path.read_text(encoding="utf-8")
    debug_log("info", f"Obfuscating file: {file_path}", {"language": language, "level": options.level})

    report = encode(source_code, language, options, settings=config)

    target = output_path_for(file_path, output_path, config, "obfuscated")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(report.output_code, encoding="utf-8")

    debug_log("info", f"Saved output to: {target}", {"step_log": list(report.analysis.step_log)})
    return {
        "file": str(file_path),
        "output": str(target),
        "language": report.analysis.language,
        "level": options.level,
        "input_bytes": len(source_code.encode("utf-8")),
        "output_bytes": len(report.output_code.encode("utf-8")),
        "warnings": len(report.warnings),
        "report": report.to_dict(include_code=False),
    }


async def process_directory(
    dir_path: Path,
    config: Config,
    handler: Callable[[Path, Optional[Path]], dict],
    output_dir: Optional[Path] = None,
    announce: bool = True,
) -> list[dict]:
    """Run ``handler`` over every source file in a directory.

    Files are processed in worker threads, at most ``config.concurrency`` at
    a time. A file that fails is reported in its result instead of stopping
    the others.

    Args:
        dir_path: Path to directory
        config: Configuration
        handler: Called as ``handler(file_path, output_path)``
        output_dir: Optional output directory mirroring the input tree
        announce: Whether to print the file count and a progress bar

    Returns:
        List of processing statistics for each file, in path order
    """
    files = find_source_files(dir_path)
    if announce:
        console.print(f"[blue]Found {len(files)} source files in {dir_path}[/blue]")

    debug_log("info", f"Processing directory: {dir_path}", {
        "files_count": len(files),
        "files": [str(f) for f in files[:10]],  # First 10 files
    })

    semaphore = asyncio.Semaphore(config.concurrency)
    pbar = tqdm(total=len(files), desc="Processing files", unit="file", disable=not (files and announce))

    async def run_one(file_path: Path) -> dict:
        out_path = output_dir / file_path.relative_to(dir_path) if output_dir else None
        async with semaphore:
            try:
                result = await asyncio.to_thread(handler, file_path, out_path)
            except (CodeUnveilError, OSError, UnicodeDecodeError) as e:
                console.print(f"[red]Error processing {file_path}: {e}[/red]")
                debug_log("error", f"Failed: {file_path}", {"error": str(e)})
                result = {"file": str(file_path), "error": str(e)}
        pbar.update(1)
        return result

    try:
        results = await asyncio.gather(*(run_one(f) for f in files))
    finally:
        pbar.close()
    return list(results)


def _print_json(data) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    debug_log("error", message)
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """codeunveil - pattern-driven deobfuscator and obfuscator."""
    pass


@main.command()
@click.argument("input_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", "output_path", type=click.Path(path_type=Path), help="Output file/directory path")
@click.option("-l", "--language", help="Language tag (default: from file suffix)")
@click.option(
    "--policy",
    type=click.Choice([p.value for p in ConfidencePolicy]),
    help="How reported confidence is derived",
)
@click.option("--json", "json_output", is_flag=True, help="Print reports as JSON")
@click.option("--no-header", is_flag=True, help="Do not prepend the header comment")
@click.option("--debug", is_flag=True, help="Enable debug logging to file")
@click.option("--debug-file", type=click.Path(path_type=Path), help="Debug log file path (default: codeunveil_debug_TIMESTAMP.log)")
def deobfuscate(
    input_path: Path,
    output_path: Optional[Path],
    language: Optional[str],
    policy: Optional[str],
    json_output: bool,
    no_header: bool,
    debug: bool,
    debug_file: Optional[Path],
):
    """Deobfuscate a source file or every source file in a directory."""
    if debug:
        setup_debug_logger(debug_file)
        console.print(f"[yellow]Debug logging enabled: {debug_log_file}[/yellow]")
        debug_log("info", "Debug logging started", {
            "input_path": str(input_path),
            "output_path": str(output_path) if output_path else None,
            "language": language,
            "policy": policy,
        })

    # Only override .env values if CLI args are explicitly provided
    config_kwargs = {}
    if no_header:
        config_kwargs["add_header"] = False
    if json_output:
        config_kwargs["json_output"] = True
    config = Config(**config_kwargs)

    async def run() -> list[dict]:
        if input_path.is_file():
            return [await asyncio.to_thread(deobfuscate_file, input_path, config, output_path, language, policy)]
        handler = partial(_deobfuscate_in_tree, config=config, language=language, policy=policy)
        return await process_directory(input_path, config, handler, output_path, announce=not config.json_output)

    try:
        results = asyncio.run(run())
    except (CodeUnveilError, UnicodeDecodeError) as e:
        _fail(str(e))

    debug_log("info", "Processing complete", {"results": results})
    if config.json_output:
        _print_json([r.get("report", r) for r in results] if input_path.is_dir() else results[0]["report"])
        return

    table = Table(title="Processing Summary")
    table.add_column("File")
    table.add_column("Language")
    table.add_column("Obfuscation")
    table.add_column("Confidence")
    table.add_column("Warnings")
    table.add_column("Errors")
    table.add_column("Status")

    for r in results:
        status = "✓" if "error" not in r else "✗"
        table.add_row(
            r.get("file", "unknown"),
            r.get("language", "-"),
            r.get("obfuscation_type", "-"),
            str(r.get("confidence", "-")),
            str(r.get("warnings", 0)),
            str(r.get("errors", 0)),
            status,
        )

    console.print(table)

    if debug:
        console.print(f"\n[yellow]Debug log saved to: {debug_log_file}[/yellow]")


def _deobfuscate_in_tree(file_path: Path, out_path: Optional[Path], config: Config, language, policy) -> dict:
    return deobfuscate_file(file_path, config, out_path, language, policy)


def _obfuscate_in_tree(file_path: Path, out_path: Optional[Path], config: Config, options, language) -> dict:
    return obfuscate_file(file_path, config, options, out_path, language)


@main.command()
@click.argument("input_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", "output_path", type=click.Path(path_type=Path), help="Output file/directory path")
@click.option("-l", "--language", help="Language tag (default: from file suffix)")
@click.option("--level", type=int, help="Obfuscation level 1-10 (out-of-range values are clamped)")
@click.option("--seed", type=int, help="Seed for reproducible output")
@click.option("--no-string-encryption", is_flag=True, help="Leave string literals readable")
@click.option("--no-variable-renaming", is_flag=True, help="Keep declared identifiers")
@click.option("--no-control-flow-obfuscation", is_flag=True, help="Leave conditions untouched")
@click.option("--no-dead-code-injection", is_flag=True, help="Do not insert junk statements")
@click.option("--no-anti-debug", is_flag=True, help="Do not prepend debugger guards")
@click.option("--no-vm-protection", is_flag=True, help="Skip the encoded loader layer")
@click.option("--no-bytecode-encryption", is_flag=True, help="Skip the byte-list layer")
@click.option("--no-custom-encryption", is_flag=True, help="Skip the shift/reverse layer")
@click.option("--json", "json_output", is_flag=True, help="Print reports as JSON")
@click.option("--debug", is_flag=True, help="Enable debug logging to file")
@click.option("--debug-file", type=click.Path(path_type=Path), help="Debug log file path (default: codeunveil_debug_TIMESTAMP.log)")
def obfuscate(
    input_path: Path,
    output_path: Optional[Path],
    language: Optional[str],
    level: Optional[int],
    seed: Optional[int],
    no_string_encryption: bool,
    no_variable_renaming: bool,
    no_control_flow_obfuscation: bool,
    no_dead_code_injection: bool,
    no_anti_debug: bool,
    no_vm_protection: bool,
    no_bytecode_encryption: bool,
    no_custom_encryption: bool,
    json_output: bool,
    debug: bool,
    debug_file: Optional[Path],
):
    """Obfuscate a source file or every source file in a directory."""
    if debug:
        setup_debug_logger(debug_file)
        console.print(f"[yellow]Debug logging enabled: {debug_log_file}[/yellow]")

    config = Config(**({"json_output": True} if json_output else {}))
    options = ObfuscationConfig(
        level=level if level is not None else config.obfuscation_level,
        seed=seed,
        string_encryption=not no_string_encryption,
        variable_renaming=not no_variable_renaming,
        control_flow_obfuscation=not no_control_flow_obfuscation,
        dead_code_injection=not no_dead_code_injection,
        anti_debug=not no_anti_debug,
        vm_protection=not no_vm_protection,
        bytecode_encryption=not no_bytecode_encryption,
        custom_encryption=not no_custom_encryption,
    )
    debug_log("info", "Encoder options", options.model_dump())

    async def run() -> list[dict]:
        if input_path.is_file():
            return [await asyncio.to_thread(obfuscate_file, input_path, config, options, output_path, language)]
        handler = partial(_obfuscate_in_tree, config=config, options=options, language=language)
        return await process_directory(input_path, config, handler, output_path, announce=not config.json_output)

    try:
        results = asyncio.run(run())
    except (CodeUnveilError, UnicodeDecodeError) as e:
        _fail(str(e))

    if config.json_output:
        _print_json([r.get("report", r) for r in results] if input_path.is_dir() else results[0]["report"])
        return

    table = Table(title=f"Obfuscation Summary (level {options.level})")
    table.add_column("File")
    table.add_column("Output")
    table.add_column("Size")
    table.add_column("Status")

    for r in results:
        status = "✓" if "error" not in r else "✗"
        size = f"{r['input_bytes']} → {r['output_bytes']} bytes" if "error" not in r else "-"
        table.add_row(r.get("file", "unknown"), r.get("output", "-"), size, status)

    console.print(table)


@main.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-l", "--language", help="Language tag (default: from file suffix)")
@click.option("--json", "json_output", is_flag=True, help="Print the analysis as JSON")
def analyze(input_path: Path, language: Optional[str], json_output: bool):
    """Analyze a file and show detected obfuscation patterns and threats."""
    config = Config()
    language = resolve_language(input_path, language, config)
    try:
        source_code = input_path.read_text(encoding="utf-8")
        result = analyze_code(source_code, language)
    except (CodeUnveilError, UnicodeDecodeError) as e:
        _fail(str(e))
    threats = scan_threats(source_code)

    if json_output:
        _print_json({
            "language": result.language,
            "classification": result.classification,
            "obfuscation_level": result.obfuscation_level.value,
            "confidence": result.confidence,
            "severity_score": result.severity_score,
            "detected_patterns": [d.to_dict() for d in result.detected_patterns],
            "advanced_patterns": [a.to_dict() for a in result.advanced_patterns],
            "security_threats": threats,
        })
        return

    console.print(f"[blue]File:[/blue] {input_path}")
    console.print(f"[blue]Language:[/blue] {result.language}")
    console.print(f"[blue]Classification:[/blue] {result.classification or 'Unknown'}")
    console.print(f"[blue]Obfuscation level:[/blue] {result.obfuscation_level.value} (score {result.severity_score})")
    console.print(f"[blue]Confidence:[/blue] {result.confidence}%")

    patterns = Table(title="Detected Patterns")
    patterns.add_column("Pattern")
    patterns.add_column("Severity")
    patterns.add_column("Matches")
    for detected in result.detected_patterns:
        patterns.add_row(detected.pattern.name, detected.pattern.severity.value, str(detected.match_count))
    console.print(patterns)

    if result.advanced_patterns:
        advanced = Table(title="Advanced Patterns")
        advanced.add_column("Type")
        advanced.add_column("Severity")
        advanced.add_column("Count")
        advanced.add_column("Description")
        for pattern in result.advanced_patterns:
            advanced.add_row(pattern.type, pattern.severity.value, str(pattern.count), pattern.description)
        console.print(advanced)

    if threats:
        console.print("\n[red]Security threats:[/red]")
        for threat in threats:
            console.print(f"  - {threat}")
    else:
        console.print("\n[green]No security threats detected[/green]")


if __name__ == "__main__":
    main()
