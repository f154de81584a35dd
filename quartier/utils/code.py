import secrets

# Sans 0/O ni 1/I pour éviter les confusions à la saisie
FAMILY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
FAMILY_CODE_PREFIX = "FAM-"


def generate_verification_code(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def generate_family_code() -> str:
    return FAMILY_CODE_PREFIX + "".join(secrets.choice(FAMILY_CODE_ALPHABET) for _ in range(6))
