import math


def area(radius):
    """Area of a circle."""
    if radius < 0:
        raise ValueError("radius must be positive")
    total = math.pi * radius * radius
    return total


for size in range(3):
    print("area", area(size))
