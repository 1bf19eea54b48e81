import secrets
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from zettelkasten.config import Settings

security = HTTPBasic()


def get_credentials_verifier(settings: Settings) -> Callable[..., str]:
    """Build a dependency checking basic auth credentials against ``settings``."""

    def verify_credentials(credentials: HTTPBasicCredentials = Depends(security)) -> str:  # noqa: B008
        is_correct_username = secrets.compare_digest(
            credentials.username.encode(), settings.auth_username.encode()
        )
        is_correct_password = secrets.compare_digest(
            credentials.password.encode(), settings.auth_password.encode()
        )

        if not (is_correct_username and is_correct_password and settings.auth_password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect username or password",
                headers={"WWW-Authenticate": "Basic"},
            )
        return credentials.username

    return verify_credentials
