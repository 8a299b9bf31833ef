"""
Container Build Recipe
Renders a two-stage Dockerfile: a Node.js stage that compiles the front-end
and an nginx stage that serves the static output on the exposed port.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from frontend_deploy.errors import ConfigurationError
from frontend_deploy.settings import Settings

logger = logging.getLogger(__name__)

NGINX_CONFIG_NAME = "nginx.conf"
NGINX_HTML_ROOT = "/usr/share/nginx/html"

DOCKERIGNORE_ENTRIES = [
    "node_modules",
    "npm-debug.log",
    ".git",
    ".env*",
    "Dockerfile",
    ".dockerignore",
]


@dataclass
class BuildRecipe:
    """Everything the container engine needs to build the front-end image."""
    build_image: str
    runtime_image: str
    install_command: str
    build_command: str
    build_output_dir: str
    exposed_port: int
    start_command: List[str] = field(default_factory=lambda: ["nginx", "-g", "daemon off;"])
    workdir: str = "/app"

    @classmethod
    def from_settings(cls, settings: Settings) -> "BuildRecipe":
        return cls(
            build_image=f"node:{settings.node_version}-alpine",
            runtime_image=f"nginx:{settings.nginx_version}-alpine",
            install_command=settings.install_command,
            build_command=settings.build_command,
            build_output_dir=settings.build_output_dir.strip('/'),
            exposed_port=settings.container_port,
        )


def render_dockerfile(recipe: BuildRecipe) -> str:
    """Render the multi-stage Dockerfile text."""
    if not recipe.start_command:
        raise ConfigurationError("A startup command is required")

    lines = [
        "# Build stage: install dependencies and compile static assets",
        f"FROM {recipe.build_image} AS build",
        f"WORKDIR {recipe.workdir}",
        "COPY package*.json ./",
        f"RUN {recipe.install_command}",
        "COPY . .",
        f"RUN {recipe.build_command}",
        "",
        "# Serve stage: static files behind nginx",
        f"FROM {recipe.runtime_image}",
        f"COPY {NGINX_CONFIG_NAME} /etc/nginx/conf.d/default.conf",
        f"COPY --from=build {recipe.workdir}/{recipe.build_output_dir} {NGINX_HTML_ROOT}",
        f"EXPOSE {recipe.exposed_port}",
        # exec form so nginx runs as PID 1 and receives SIGTERM from ECS
        f"CMD {json.dumps(recipe.start_command)}",
        "",
    ]
    return "\n".join(lines)


def render_nginx_config(recipe: BuildRecipe) -> str:
    """Render the nginx server block with a single-page-app fallback."""
    return "\n".join([
        "server {",
        f"    listen {recipe.exposed_port};",
        "    server_name _;",
        f"    root {NGINX_HTML_ROOT};",
        "    index index.html;",
        "",
        "    location / {",
        "        try_files $uri $uri/ /index.html;",
        "    }",
        "}",
        "",
    ])


def render_dockerignore() -> str:
    return "\n".join(DOCKERIGNORE_ENTRIES) + "\n"


def write_build_context(recipe: BuildRecipe, context_dir: str,
                        dockerfile: str = "Dockerfile",
                        overwrite: bool = False) -> Dict[str, Path]:
    """Write Dockerfile, nginx config and .dockerignore into the build context.

    Existing files are left alone unless ``overwrite`` is set, so a
    hand-maintained Dockerfile is never replaced by accident.
    """
    context = Path(context_dir)
    if not context.is_dir():
        raise ConfigurationError(f"Build context does not exist: {context}")

    files = {
        "dockerfile": (context / dockerfile, render_dockerfile(recipe)),
        "nginx_config": (context / NGINX_CONFIG_NAME, render_nginx_config(recipe)),
        "dockerignore": (context / ".dockerignore", render_dockerignore()),
    }

    written = {}
    for key, (path, content) in files.items():
        if path.exists() and not overwrite:
            logger.info(f"Keeping existing {path}")
            written[key] = path
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        logger.info(f"Wrote {path}")
        written[key] = path

    return written
