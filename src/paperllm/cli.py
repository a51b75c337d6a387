from __future__ import annotations
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from .bootstrap import build_app, configure_logging
from .config_loader import ConfigError, load_config, load_provider_config
from .core.errors import ProviderError
from .core.models import TextDelta
from .core.session import StreamingSession
from .secrets.sources import KeyringCredentialStore

app = typer.Typer(add_completion=False, help="Stream answers about a paper from OpenAI, Claude or Gemini.")

ConfigOpt = typer.Option(None, "--config", "-c", help="YAML config file.")
ProviderOpt = typer.Option(None, "--provider", "-p", help="openai | anthropic | gemini | mock")
ModelOpt = typer.Option(None, "--model", "-m", help="Model id override.")


@app.callback()
def main(
    typer_ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    configure_logging(verbose=verbose)
    typer_ctx.obj = {"verbose": verbose}


def _verbose(typer_ctx: typer.Context) -> bool:
    return bool((typer_ctx.obj or {}).get("verbose"))


@contextmanager
def _reported() -> Iterator[None]:
    try:
        yield
    except (ProviderError, ConfigError, FileNotFoundError) as e:
        typer.echo(f"[error] {e}", err=True)
        raise typer.Exit(code=1)


def _print_stream(session: StreamingSession, prompt: str, *, context: Optional[str] = None,
                  selection: Optional[str] = None) -> None:
    handle = session.start(session.request(prompt, context=context, selection=selection))
    events = iter(handle)
    try:
        for event in events:
            if isinstance(event, TextDelta):
                typer.echo(event.text, nl=False)
        typer.echo("")
    except KeyboardInterrupt:
        handle.cancel("interrupted")
        # release the HTTP response now rather than at garbage collection
        events.close()
        typer.echo("\n[stream interrupted]")


@app.command()
def ask(
    typer_ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Question to ask."),
    config: Optional[Path] = ConfigOpt,
    provider: Optional[str] = ProviderOpt,
    model: Optional[str] = ModelOpt,
    context: Optional[str] = typer.Option(None, "--context", help="Context text from the paper."),
    context_file: Optional[Path] = typer.Option(None, "--context-file", help="Read context from a file."),
    selection: Optional[str] = typer.Option(None, "--selection", help="Selected passage."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Attach this document."),
    file_id: Optional[str] = typer.Option(None, "--file-id", help="Reuse an uploaded file reference."),
    keep_file: bool = typer.Option(False, "--keep-file", help="Do not delete an uploaded --file afterwards."),
):
    """Ask one question and stream the answer."""
    with _reported():
        ctx = build_app(config, provider=provider, model=model, verbose=_verbose(typer_ctx))
        if context_file is not None:
            context = context_file.read_text(encoding="utf-8")
        session = StreamingSession(ctx["client"], ctx["files"], document_id=file.name if file else "")
        session.file_reference = file_id
        uploaded = False
        if file is not None and not file_id:
            uploaded = session.attach(str(file)) is not None
            if uploaded and keep_file:
                typer.echo(f"[file] {session.file_reference}", err=True)
        try:
            _print_stream(session, prompt, context=context, selection=selection)
        finally:
            if uploaded and not keep_file:
                session.detach()


@app.command()
def chat(
    typer_ctx: typer.Context,
    config: Optional[Path] = ConfigOpt,
    provider: Optional[str] = ProviderOpt,
    model: Optional[str] = ModelOpt,
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Attach this document for the session."),
):
    """Interactive loop; Ctrl+C cancels the answer in flight."""
    with _reported():
        ctx = build_app(config, provider=provider, model=model, verbose=_verbose(typer_ctx))
        session = StreamingSession(ctx["client"], ctx["files"], document_id=file.name if file else "")
        if file is not None:
            session.attach(str(file))

    typer.echo(f"paperllm chat ({ctx['family']}/{ctx['provider_config'].model}). Type /help for commands.")
    try:
        while True:
            try:
                user_input = input("> ").strip()
            except (EOFError, KeyboardInterrupt):
                typer.echo("\nBye.")
                return

            if user_input in ("/exit", "/quit"):
                typer.echo("Bye.")
                return
            if user_input == "/help":
                typer.echo("Commands: /help, /id, /exit, /quit")
                continue
            if user_input == "/id":
                typer.echo(session.file_reference or "(no file attached)")
                continue
            if not user_input:
                continue

            try:
                _print_stream(session, user_input)
            except ProviderError as e:
                typer.echo(f"[error] {e}", err=True)
    finally:
        with _reported():
            session.detach()


@app.command("set-key")
def set_key(
    provider: str = typer.Argument(..., help="openai | anthropic | gemini"),
    config: Optional[Path] = ConfigOpt,
    key: Optional[str] = typer.Option(None, "--key", help="Key value; prompted for when omitted."),
):
    """Store a provider API key in the system keyring."""
    with _reported():
        family = provider.lower()
        cfg = load_config(config) if config is not None else {}
        provider_config = load_provider_config(family, (cfg.get("providers") or {}).get(family))
        value = key if key is not None else typer.prompt("API key", hide_input=True)
        KeyringCredentialStore(provider_config.keychain_service, provider_config.keychain_account).save_credential(value)
    typer.echo(f"Saved key for {family} ({provider_config.keychain_service}).")


@app.command()
def upload(
    typer_ctx: typer.Context,
    provider: str = typer.Argument(..., help="openai | anthropic | gemini"),
    path: Path = typer.Argument(..., help="Document to upload."),
    config: Optional[Path] = ConfigOpt,
):
    """Upload a document and print its file reference."""
    with _reported():
        ctx = build_app(config, provider=provider, verbose=_verbose(typer_ctx))
        reference = ctx["files"].ensure_file_id(None, str(path))
    typer.echo(reference or "")


@app.command("delete-file")
def delete_file(
    typer_ctx: typer.Context,
    provider: str = typer.Argument(..., help="openai | anthropic | gemini"),
    reference: str = typer.Argument(..., help="File reference returned by upload."),
    config: Optional[Path] = ConfigOpt,
):
    """Delete an uploaded document (already-deleted counts as success)."""
    with _reported():
        ctx = build_app(config, provider=provider, verbose=_verbose(typer_ctx))
        ctx["files"].delete_file_if_needed(reference)
    typer.echo("Deleted.")
