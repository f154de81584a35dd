from urllib.parse import quote


def generate_default_avatar_url(full_name: str) -> str:
    """Avatar par défaut (initiales) pour un nouveau résident"""
    return f"https://ui-avatars.com/api/?name={quote(full_name.strip())}&background=059669&color=fff&size=128"
