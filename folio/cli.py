"""Command-line interface for Folio.

This module defines the CLI commands using Click framework.
It provides commands for creating new projects, building sites, running the
development server and managing posts.

Commands:
- new: Scaffold a new Folio project.
- build: Build the site into the output directory.
- serve: Run development server with live reload.
- post: Create a new post interactively.
- list: List posts.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from datetime import date
from pathlib import Path

import click
import questionary

from . import __version__
from .config import load_config
from .content import ContentRepository
from .extractors import parse_tags
from .utils import slugify

# Files copied into every new project
_SCAFFOLD_DIR = Path(__file__).parent / "scaffold"


@click.group()
@click.version_option(version=__version__, prog_name="folio")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Folio portfolio and blog generator."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Folio project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Folio site created at {target}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include unpublished posts")
def build(drafts: bool):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import BuildError, build_site

    try:
        result = build_site(project_root, include_unpublished=drafts)
    except BuildError as exc:
        try:
            rel_path = exc.source_path.relative_to(project_root)
        except ValueError:
            rel_path = exc.source_path
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    for slug, errors in result.degraded.items():
        click.echo(
            click.style(f"Warning: {slug}: {len(errors)} widget(s) failed to render", fg="yellow"),
            err=True,
        )
    click.echo(f"Built {len(result.posts)} posts into {result.output_dir}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include unpublished posts")
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides folio.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides folio.yaml ws_port)",
)
def serve(drafts: bool, port: int | None, ws_port: int | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    from .server import DevServer

    server = DevServer(project_root, http_port=port, ws_port=ws_port)
    server.start(include_unpublished=drafts)


@cli.command()
def post():
    """Create a new post interactively."""
    project_root = Path.cwd()
    config = load_config(project_root)
    content_dir = project_root / config["content_dir"]

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    slug = questionary.text(
        "Slug:", default=slugify(title), style=_questionary_style()
    ).ask()
    if slug is None:
        raise click.Abort()
    slug = slugify(slug.strip() or title)
    if not slug:
        raise click.ClickException("Could not derive a slug from the title.")

    # Check for duplicates before asking anything else
    repository = ContentRepository(content_dir)
    if slug in repository:
        existing = repository.get(slug).path
        raise click.ClickException(
            f"A post with slug '{slug}' already exists: {existing.name}"
        )
    target_path = content_dir / f"{slug}.md"
    if target_path.exists():
        raise click.ClickException(
            f"File already exists: {target_path.relative_to(project_root)}"
        )

    description = questionary.text(
        "Description (optional):", style=_questionary_style()
    ).ask()
    tags = questionary.text(
        "Tags (comma separated, optional):", style=_questionary_style()
    ).ask()
    published = questionary.confirm(
        "Publish now?", default=False, style=_questionary_style()
    ).ask()
    if description is None or tags is None or published is None:
        raise click.Abort()

    content_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(
        _post_template(title, description.strip(), parse_tags(tags), published),
        encoding="utf-8",
    )
    click.echo(f"Created {target_path.relative_to(project_root)}")


@cli.command(name="list")
@click.option("--all", "show_all", is_flag=True, help="Include unpublished posts")
def list_posts(show_all: bool):
    """List posts, newest first."""
    project_root = Path.cwd()
    config = load_config(project_root)
    repository = ContentRepository(project_root / config["content_dir"])
    posts = repository.posts(include_unpublished=show_all)
    if not posts:
        click.echo("No posts found.")
        return
    for item in posts:
        marker = "" if item.published else click.style(" [draft]", fg="yellow")
        click.echo(f"{item.date.isoformat()}  {item.slug}  {item.title}{marker}")


def _post_template(
    title: str, description: str, tags: list[str], published: bool
) -> str:
    """Return the front matter header and heading for a new post."""
    lines = [
        "---",
        f"title: {_yaml_string(title)}",
    ]
    if description:
        lines.append(f"description: {_yaml_string(description)}")
    lines.append(f"date: {date.today().isoformat()}")
    lines.append(f"tags: [{', '.join(_yaml_string(tag) for tag in tags)}]")
    lines.append(f"published: {'true' if published else 'false'}")
    lines.append("---")
    return "\n".join(lines) + f"\n\n# {title}\n\n"


def _yaml_string(value: str) -> str:
    """Double-quote a scalar so YAML never reinterprets it."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new Folio project.

    Args:
        root: Root directory for the new project.
    """
    for src_path in _SCAFFOLD_DIR.rglob("*"):
        if src_path.is_dir():
            continue
        rel_path = src_path.relative_to(_SCAFFOLD_DIR)
        if rel_path.name == "gitignore":
            rel_path = rel_path.with_name(".gitignore")
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)
    for name in ("static", "layouts"):
        (root / name).mkdir(parents=True, exist_ok=True)

    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("FOLIO_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run(
            [git_bin, "init"],
            cwd=root,
            check=True,
            capture_output=True,
        )
    except (OSError, subprocess.CalledProcessError):
        # Non-fatal: user can run git init manually
        pass
