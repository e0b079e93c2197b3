"""
Per-tenant provisioning artifacts.

The bootstrap plan copies <artifact_root>/<slug>/openclaw-gateway.env into
/etc/openclaw-tenants/<user>.env. The file is rendered here, right before a
live bootstrap run, from a Jinja2 template shipped with the package.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import jinja2

from core.errors import ValidationError
from core.provisioning.planner import GATEWAY_ENV_FILENAME
from core.provisioning.schemas import MAX_PORT, MIN_PORT, SLUG_RE

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
GATEWAY_ENV_TEMPLATE = "openclaw-gateway.env.j2"


def get_jinja_env() -> jinja2.Environment:
    """Create Jinja2 environment for artifact templates."""
    return jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        undefined=jinja2.StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def artifact_dir(artifact_root, slug: str) -> Path:
    return Path(artifact_root) / slug


def render_gateway_env(
    slug: str,
    linux_user: str,
    openclaw_home: str,
    gateway_port: Optional[int],
    env: Optional[jinja2.Environment] = None,
) -> str:
    """Render the gateway env file contents, validating every input."""
    slug = (slug or "").strip()
    linux_user = (linux_user or "").strip()
    openclaw_home = (openclaw_home or "").strip()

    if not slug:
        raise ValidationError("Missing tenant slug for artifact generation")
    if not SLUG_RE.match(slug):
        raise ValidationError(f"Invalid tenant slug for artifact generation: {slug}")
    if not linux_user:
        raise ValidationError("Missing linux_user for artifact generation")
    if not openclaw_home:
        raise ValidationError("Missing openclaw_home for artifact generation")
    if not isinstance(gateway_port, int) or isinstance(gateway_port, bool) or not MIN_PORT <= gateway_port <= MAX_PORT:
        raise ValidationError("Missing/invalid gateway_port for gateway unit provisioning")

    template = (env or get_jinja_env()).get_template(GATEWAY_ENV_TEMPLATE)
    return template.render(
        slug=slug,
        linux_user=linux_user,
        openclaw_home=openclaw_home.rstrip("/"),
        gateway_port=gateway_port,
    )


def write_gateway_env(
    artifact_root,
    slug: str,
    linux_user: str,
    openclaw_home: str,
    gateway_port: Optional[int],
) -> Path:
    """Render and write <artifact_root>/<slug>/openclaw-gateway.env with mode 0600."""
    content = render_gateway_env(slug, linux_user, openclaw_home, gateway_port)

    target_dir = artifact_dir(artifact_root, slug)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / GATEWAY_ENV_FILENAME

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    # O_CREAT mode is ignored when the file already exists
    os.chmod(path, 0o600)

    logger.info(f"Wrote gateway env artifact {path}")
    return path
