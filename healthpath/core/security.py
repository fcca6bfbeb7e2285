from .config import settings


def verify_api_key(api_key: str) -> bool:
    """
    Verify API key against configured valid keys
    """
    return api_key in settings.api_keys
