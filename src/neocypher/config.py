"""Configuration management for the Neo4j REST connection.

Loads configuration from environment variables and an optional .env file
in the project root.

Example .env:

    NEO4J_URL=http://localhost:7474/db/data/
    NEO4J_USERNAME=neo4j
    NEO4J_PASSWORD=your_password_here
    NEO4J_CA_CERT_FILE=/etc/ssl/neo4j-ca.pem
    LOG_LEVEL=INFO
"""

from typing import Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Client configuration loaded from environment / .env file.

    We use explicit aliases so the mapping to env vars is obvious and
    easy to consume from scripts.
    """

    # Neo4j configuration
    neo4j_url: AnyUrl = Field(
        "http://localhost:7474/db/data/",
        alias="NEO4J_URL",
        description="Neo4j REST service root, e.g. http://localhost:7474/db/data/",
    )
    neo4j_username: Optional[str] = Field(
        None,
        alias="NEO4J_USERNAME",
        description="Neo4j username (falls back to the URL userinfo)",
    )
    neo4j_password: Optional[str] = Field(
        None,
        alias="NEO4J_PASSWORD",
        description="Neo4j password (falls back to the URL userinfo)",
    )
    neo4j_timeout: float = Field(
        30.0,
        alias="NEO4J_TIMEOUT",
        description="HTTP timeout in seconds, enforced by the transport only",
    )
    neo4j_ca_cert_file: Optional[str] = Field(
        None,
        alias="NEO4J_CA_CERT_FILE",
        description="PEM bundle used to verify the server certificate",
    )
    neo4j_verify_tls: bool = Field(
        True,
        alias="NEO4J_VERIFY_TLS",
        description="Set to false to skip TLS certificate verification",
    )
    neo4j_user_agent: str = Field(
        "neocypher",
        alias="NEO4J_USER_AGENT",
        description="User-Agent header sent with every request",
    )

    # CLI configuration
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Log level for the CLI (e.g. DEBUG, INFO, WARN, ERROR)",
    )

    # Pydantic v2 settings for env loading
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,  # we use explicit aliases, so keep env lookup strict
        extra="ignore",
        populate_by_name=False,
    )

    def credentials(self) -> Optional[tuple[str, str]]:
        """Return basic-auth credentials, preferring explicit settings over URL userinfo."""
        username = self.neo4j_username or self.neo4j_url.username
        password = self.neo4j_password or self.neo4j_url.password
        if not username:
            return None
        return username, password or ""

    def service_root(self) -> str:
        """Service root URL without userinfo, always ending in a slash."""
        url = self.neo4j_url
        netloc = url.host or ""
        default_port = {"http": 80, "https": 443}.get(url.scheme)
        if url.port is not None and url.port != default_port:
            netloc = f"{netloc}:{url.port}"
        path = url.path or "/"
        if not path.endswith("/"):
            path += "/"
        return f"{url.scheme}://{netloc}{path}"
