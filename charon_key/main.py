from __future__ import annotations

import logging
from typing import NoReturn

import typer

from charon_key.common.cancel import CancellationToken
from charon_key.common.run_id import generate_run_id
from charon_key.common.version import get_version, user_agent
from charon_key.config import Settings, load_settings, validate_settings
from charon_key.domain.error_codes import ExitCode
from charon_key.domain.mapping import IdentityMapping
from charon_key.errors import AppError, ConfigError, InvalidKeyFormatError
from charon_key.infra.cache.file_cache import FileKeyCache
from charon_key.infra.http.keys_client import KeyListingClient
from charon_key.infra.logging.setup import closeRunLogger, createRunLogger, logEvent
from charon_key.usecases.authorized_keys_usecase import AuthorizedKeysUseCase
from charon_key.usecases.resolve_keys_usecase import ResolveKeysUseCase

app = typer.Typer(
    add_completion=False,
    help="SSH AuthorizedKeysCommand: resolve public keys of mapped external identities.",
)


def versionCallback(value: bool) -> None:
    if value:
        typer.echo(f"charon-key version {get_version()}")
        raise typer.Exit()


def failSecure(logger: logging.Logger, runId: str, err: InvalidKeyFormatError) -> NoReturn:
    """
    Назначение:
        Единственный путь аварийного завершения при невалидном ключе.
        В stdout не пишется ни одного байта, чтобы sshd не получил
        частичный список ключей.

    Поведение:
        - Логирует причину и завершает процесс с ExitCode.INVALID_KEY_FORMAT.
    """
    logEvent(logger, logging.ERROR, runId, "security", f"invalid key format detected: {err}")
    logEvent(logger, logging.ERROR, runId, "security", "terminating due to invalid key format (fail secure)")
    raise typer.Exit(code=ExitCode.INVALID_KEY_FORMAT)


def buildUseCase(settings: Settings, mapping: IdentityMapping, logger: logging.Logger):
    """
    Назначение:
        Сборка графа зависимостей одного вызова.

    Выходные данные:
        (AuthorizedKeysUseCase, KeyListingClient); клиент закрывает вызывающий.
    """
    client = KeyListingClient(
        baseUrl=settings.keys_url,
        timeoutSeconds=settings.timeout_seconds,
        retries=settings.retries,
        retryBackoffSeconds=settings.retry_backoff_seconds,
        userAgent=user_agent(),
        logger=logger,
    )
    cache = FileKeyCache(settings.cache_dir, settings.cache_ttl_delta, logger=logger)
    resolver = ResolveKeysUseCase(
        mapping=mapping,
        key_source=client,
        key_cache=cache,
        max_workers=settings.max_workers,
    )
    return AuthorizedKeysUseCase(resolver), client


def runAuthorizedKeysCommand(
    account: str,
    settings: Settings,
    mapping: IdentityMapping,
    runId: str,
    sources: list[str],
    authorizedKeysFile: str | None = None,
) -> None:
    """
    Назначение:
        Выполняет резолв и печатает результат в stdout.

    Поведение:
        - Все ошибки уровня AppError -> exit code из err.exit_code.
        - InvalidKeyFormatError -> failSecure.
        - Непредвиденные ошибки -> ExitCode.GENERAL_ERROR.
    """
    try:
        logger = createRunLogger(runId=runId, logLevel=settings.log_level, logFile=settings.log_file)
    except OSError as exc:
        typer.echo(f"ERROR: failed to open log file: {exc}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR)

    try:
        logEvent(
            logger,
            logging.INFO,
            runId,
            "core",
            f"starting charon-key version={get_version()} account={account} sources={sources}",
        )
        logEvent(
            logger,
            logging.DEBUG,
            runId,
            "config",
            f"user_map={mapping.to_dict()} cache_dir={settings.cache_dir} cache_ttl={settings.cache_ttl}m "
            f"keys_url={settings.keys_url} retries={settings.retries} max_workers={settings.max_workers} "
            f"deadline_seconds={settings.deadline_seconds}",
        )

        usecase, client = buildUseCase(settings, mapping, logger)
        try:
            output = usecase.run(
                account,
                logger=logger,
                run_id=runId,
                authorized_keys_file=authorizedKeysFile,
                cancel=CancellationToken(settings.deadline_seconds),
            )
        except InvalidKeyFormatError as err:
            failSecure(logger, runId, err)
        except AppError as err:
            logEvent(logger, logging.ERROR, runId, err.category, f"failed to resolve keys: {err}")
            logEvent(logger, logging.DEBUG, runId, err.category, f"error details: {err.to_dict()}")
            raise typer.Exit(code=err.exit_code)
        except Exception as exc:
            logEvent(logger, logging.ERROR, runId, "core", f"unexpected failure: {exc!r}")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)
        finally:
            client.close()

        typer.echo(output, nl=False)
        logEvent(logger, logging.DEBUG, runId, "core", "completed successfully")
    finally:
        closeRunLogger(logger)


@app.command()
def main(
    account: str | None = typer.Argument(None, help="Local account name (sshd passes %u)."),
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    userMap: str | None = typer.Option(
        None, "--user-map", help="Mapping local:external[,local:external...]; '*' matches any account."
    ),
    cacheDir: str | None = typer.Option(None, "--cache-dir", help="Cache directory (default: OS temp/charon-key)."),
    cacheTtl: int | None = typer.Option(None, "--cache-ttl", help="Cache TTL in minutes (min 1, default 5)."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: debug|info|warn|error"),
    logFile: str | None = typer.Option(None, "--log-file", help="Also write diagnostics to this file."),
    keysUrl: str | None = typer.Option(None, "--keys-url", help="Base URL of the key-listing service."),
    timeoutSeconds: float | None = typer.Option(None, "--timeout-seconds", help="HTTP timeout per request."),
    retries: int | None = typer.Option(None, "--retries", help="Retry attempts after the first request."),
    retryBackoffSeconds: float | None = typer.Option(
        None, "--retry-backoff-seconds", help="Linear backoff step between retries."
    ),
    maxWorkers: int | None = typer.Option(None, "--max-workers", help="Identities resolved in parallel."),
    deadlineSeconds: float | None = typer.Option(
        None, "--deadline-seconds", help="Overall time budget for one invocation."
    ),
    authorizedKeysFile: str | None = typer.Option(
        None, "--authorized-keys-file", help="Local authorized_keys to merge (default: ~account/.ssh/authorized_keys)."
    ),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier for log correlation."),
    version: bool = typer.Option(
        False, "--version", "-v", callback=versionCallback, is_eager=True, help="Show version and exit."
    ),
):
    """
    Назначение:
        Точка входа AuthorizedKeysCommand:
        - загружает настройки (CLI > ENV > config > defaults) и валидирует их
        - резолвит ключи аккаунта и печатает их в stdout
        - диагностику пишет только в stderr/лог-файл
    """
    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "user_map": userMap,
        "cache_dir": cacheDir,
        "cache_ttl": cacheTtl,
        "log_level": logLevel,
        "log_file": logFile,
        "keys_url": keysUrl,
        "timeout_seconds": timeoutSeconds,
        "retries": retries,
        "retry_backoff_seconds": retryBackoffSeconds,
        "max_workers": maxWorkers,
        "deadline_seconds": deadlineSeconds,
    }
    try:
        loaded = load_settings(config_path=config, cli_overrides=cliOverrides)
        validate_settings(loaded.settings)
        mapping = IdentityMapping.parse(loaded.settings.user_map)
    except ConfigError as err:
        typer.echo(f"ERROR: configuration error: {err}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR)

    runAuthorizedKeysCommand(
        account=account or "",
        settings=loaded.settings,
        mapping=mapping,
        runId=runId,
        sources=loaded.sources_used,
        authorizedKeysFile=authorizedKeysFile,
    )


if __name__ == "__main__":
    app()
