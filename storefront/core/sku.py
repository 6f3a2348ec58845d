CATEGORY_PREFIXES = {
    "Menswear": "M",
    "Womenswear": "W",
    "Accessories": "A",
    "Outerwear": "O",
}

DEFAULT_CATEGORY = "General"


def generate_product_code(name: str) -> str:
    """First three letters of the first two words, or the first six characters."""
    words = name.split()
    if len(words) >= 2:
        return "".join(w[:3].upper() for w in words[:2])
    return name[:6].upper().replace(" ", "")


def generate_color_code(color: str) -> str:
    words = color.split()
    if len(words) >= 2:
        return "".join(w[:2].upper() for w in words)
    return color[:3].upper()


def generate_sku(category_name: str, product_code: str, size: str, color: str) -> str:
    prefix = CATEGORY_PREFIXES.get(category_name, "X")
    return f"{prefix}-{product_code}-{size.upper()}-{generate_color_code(color)}"
