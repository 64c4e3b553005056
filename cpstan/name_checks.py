# check names: parameters, varying effects and data columns
import re

from . import definitions as defn

identifier_pattern = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")


def check_names(params: list[str], varying: list[str], data_columns: list[str]) -> None:
    """
    Check that the names of parameters, varying effects and data columns
    are unique, and that they can be used as variable names in Stan.
    """
    all_names = set()

    for p in params:
        if p in all_names:
            raise ValueError(f"Duplicate parameter name: {p}")
        all_names.add(p)

    for v in varying:
        if v in all_names:
            raise ValueError(f"Duplicate varying effect name: {v}")
        all_names.add(v)

    for c in data_columns:
        if c in all_names:
            raise ValueError(f"Data column name conflicts with another name: {c}")
        all_names.add(c)

    # Check for empty names
    if any(not name for name in all_names):
        raise ValueError("Empty name found. All names must be non-empty.")

    for name in all_names:
        if not identifier_pattern.match(name):
            raise ValueError(
                f"Invalid name: {name}. Names must start with a letter and "
                "contain only letters, digits and underscores"
            )
        if name.endswith("__"):
            raise ValueError(f"Names can not end with two underscores: {name}")
        if name in defn.stan_keywords:
            raise ValueError(f"Stan keyword used as a name: {name}")

    # Check for reserved names
    for name in defn.reserved_names:
        if name in all_names:
            raise ValueError(f"Reserved variable name used: {name}")

    # the number of levels of a grouping variable g is called N_g
    for name in data_columns:
        if f"N_{name}" in all_names:
            raise ValueError(f"Reserved variable name used: N_{name}")
