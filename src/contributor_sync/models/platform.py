"""Source platforms and repository references."""

from enum import Enum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict


class Platform(str, Enum):
    """Code hosting platform a repository lives on."""

    GITHUB = "github"
    GITEE = "gitee"

    @property
    def host(self) -> str:
        return "github.com" if self is Platform.GITHUB else "gitee.com"


class RepositoryRef(BaseModel):
    """Identity of a repository: owner + name + platform."""

    model_config = ConfigDict(frozen=True)

    owner: str
    name: str
    platform: Platform = Platform.GITHUB

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def html_url(self) -> str:
        return f"https://{self.platform.host}/{self.owner}/{self.name}"

    def __str__(self) -> str:
        return f"{self.platform.value}:{self.full_name}"


def parse_repository_url(
    value: str,
    platform: Platform | None = None,
) -> RepositoryRef | None:
    """Parse a repository URL or an ``owner/repo`` string.

    Accepts forms like:
        https://github.com/rust-lang/rust
        https://gitee.com/openharmony/docs.git
        git@github.com:rust-lang/rust.git
        rust-lang/rust

    The platform is taken from the URL host when recognised, then from the
    ``platform`` argument, then defaults to GitHub.

    Returns:
        RepositoryRef, or None if no owner/name pair can be found
    """
    value = value.strip()
    if not value:
        return None

    detected = None
    path = value

    if value.startswith("git@"):
        # scp-like syntax: git@host:owner/repo.git
        host, _, path = value[4:].partition(":")
        detected = _platform_for_host(host)
    elif "://" in value:
        parsed = urlparse(value)
        detected = _platform_for_host(parsed.netloc)
        path = parsed.path

    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2:
        return None

    # Host-less strings keep the last two segments, URLs keep the first two
    owner, name = (parts[0], parts[1]) if detected or "://" in value else (parts[-2], parts[-1])
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not owner or not name:
        return None

    return RepositoryRef(
        owner=owner,
        name=name,
        platform=detected or platform or Platform.GITHUB,
    )


def _platform_for_host(host: str) -> Platform | None:
    host = host.lower().split("@")[-1].split(":")[0]
    for platform in Platform:
        if host == platform.host or host.endswith("." + platform.host):
            return platform
    return None
