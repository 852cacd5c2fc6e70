import click


def parse_sigmas(ctx, param, value):
    """Parse a space/comma separated list of positive Gaussian scales."""
    if value is None:
        return None
    parts = [p for p in str(value).replace(",", " ").split() if p]
    if not parts:
        raise click.BadParameter("At least one sigma is required.")
    sigmas = []
    for p in parts:
        try:
            s = float(p)
        except ValueError:
            raise click.BadParameter(f"Not a number: {p}") from None
        if s <= 0:
            raise click.BadParameter(f"{param.name} values must be positive, got {p}")
        sigmas.append(s)
    if len(set(sigmas)) != len(sigmas):
        raise click.BadParameter(f"Duplicate sigma(s) in '{value}'.")
    return tuple(sigmas)


def validate_positive_int(ctx, param, value):
    """Validate that value is a positive integer."""
    if value is not None and value <= 0:
        raise click.BadParameter(f"{param.name} must be positive, got {value}")
    return value


def validate_fraction(ctx, param, value):
    if value is not None and not (0 < value <= 1):
        raise click.BadParameter(f"{param.name} must be in (0, 1], got {value}")
    return value
