from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import typer

from plansync.common.run_id import generate_run_id
from plansync.common.sanitize import maskSecret, maskSecretsInObject
from plansync.common.time import getDurationMs
from plansync.config.config import Settings, loadSettings
from plansync.domain.error_codes import ErrorCode
from plansync.domain.exceptions import PlanNotFoundError, PlanSyncError, describe_error
from plansync.domain.models import DiagnosticItem, DiagnosticStage, aggregate_as_dict, canonical_id
from plansync.domain.reporting.collector import ReportCollector, STATUS_FAILED, STATUS_PARTIAL, STATUS_SUCCESS
from plansync.domain.reporting.models import ItemRef
from plansync.domain.sync.registry import get_spec
from plansync.domain.sync.results import SubmissionOutcome, SubmissionResult
from plansync.infra.artifacts.form_reader import readFormFile
from plansync.infra.artifacts.report_writer import createEmptyReport, finalizeReport, writeReportJson
from plansync.infra.http.audit_client import ApiError, AuditApiClient
from plansync.infra.http.plan_gateway import AuditPlanGateway
from plansync.infra.logging.setup import (
    StdStreamToLogger,
    TeeStream,
    bindPlanId,
    closeCommandLogger,
    createCommandLogger,
    logEvent,
)
from plansync.usecases.plan_form import PlanFormState, validate_form
from plansync.usecases.plan_loader import PlanAggregateLoader, PlanLoadResult
from plansync.usecases.plan_submission import PlanPreview, PlanSubmissionOrchestrator

APP_VERSION = "0.1.0"

app = typer.Typer(no_args_is_help=True, add_completion=False)
planApp = typer.Typer(no_args_is_help=True)

_OUTCOME_STATUS = {
    SubmissionOutcome.SUCCEEDED: STATUS_SUCCESS,
    SubmissionOutcome.PARTIAL: STATUS_PARTIAL,
    SubmissionOutcome.FAILED: STATUS_FAILED,
}
_OUTCOME_EXIT = {
    SubmissionOutcome.SUCCEEDED: 0,
    SubmissionOutcome.PARTIAL: 1,
    SubmissionOutcome.FAILED: 2,
}


def ensureDir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def requireApi(settings: Settings) -> None:
    """
    Назначение:
        Проверяет наличие параметров API для команд, которым нужен REST доступ.

    Поведение:
        - Если base_url не задан — exit code 2.
    """
    if not settings.base_url:
        typer.echo("ERROR: missing API settings: base_url", err=True)
        raise typer.Exit(code=2)


def requireForm(formPath: str | None) -> None:
    if not formPath:
        typer.echo("ERROR: --form is required", err=True)
        raise typer.Exit(code=2)
    p = Path(formPath)
    if not p.exists() or not p.is_file():
        typer.echo(f"ERROR: form file not found: {formPath}", err=True)
        raise typer.Exit(code=2)


def printRunHeader(runId: str, command: str, settings: Settings, sources: list[str]) -> None:
    """
    Назначение:
        Печатает безопасную сводку параметров запуска (без секретов).
    """
    typer.echo(
        f"run_id={runId} command={command} base_url={settings.base_url} "
        f"api_token={maskSecret(settings.api_token)} sources={sources} log_level={settings.log_level}"
    )


def echoJson(data: Any) -> None:
    typer.echo(json.dumps(maskSecretsInObject(data), ensure_ascii=False, indent=2, default=str))


def buildApiClient(settings: Settings, logger: logging.Logger, runId: str) -> AuditApiClient:
    return AuditApiClient(
        baseUrl=settings.base_url or "",
        apiToken=settings.api_token,
        timeoutSeconds=settings.timeout_seconds,
        tlsSkipVerify=settings.tls_skip_verify,
        caFile=settings.ca_file,
        retries=settings.retries,
        retryBackoffSeconds=settings.retry_backoff_seconds,
        logger=logger,
        runId=runId,
    )


def runWithReport(
    ctx: typer.Context,
    commandName: str,
    requiresApiAccess: bool,
    runner,
    formPath: str | None = None,
    requiresForm: bool = False,
) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - создаёт логгер + файл лога
        - создаёт report.json skeleton
        - валидирует обязательные входы (API/форма)
        - перенаправляет stdout/stderr в лог (tee)
        - гарантирует запись отчёта в finally

    Входные данные:
        runner: Callable[[logging.Logger, ReportCollector], int]
            Тело команды; возвращает exit code (0/1/2).
    """
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]
    sources = ctx.obj["sources"]

    startMonotonic = time.monotonic()

    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
    )

    report = createEmptyReport(runId=runId, command=commandName, configSources=sources)
    report.set_meta(items_limit=settings.report_items_limit, app_version=APP_VERSION)

    originalStdout = sys.stdout
    originalStderr = sys.stderr

    stdoutLoggerStream = StdStreamToLogger(logger, logging.INFO, runId, "stdout")
    stderrLoggerStream = StdStreamToLogger(logger, logging.ERROR, runId, "stderr")

    sys.stdout = TeeStream(originalStdout, stdoutLoggerStream)
    sys.stderr = TeeStream(originalStderr, stderrLoggerStream)

    exitCode: int | None = None

    try:
        logEvent(logger, logging.INFO, runId, "core", "Command started")
        printRunHeader(runId, commandName, settings, sources)

        if requiresApiAccess:
            try:
                requireApi(settings)
            except typer.Exit:
                logEvent(logger, logging.ERROR, runId, "config", "Missing API settings")
                report.set_status(STATUS_FAILED)
                exitCode = 2
                return

        if requiresForm:
            try:
                requireForm(formPath)
            except typer.Exit:
                logEvent(logger, logging.ERROR, runId, "form", "Form file is missing or not accessible")
                report.set_status(STATUS_FAILED)
                exitCode = 2
                return

        exitCode = runner(logger, report)

    finally:
        durationMs = getDurationMs(startMonotonic, time.monotonic())
        finalizeReport(report=report, durationMs=durationMs, logFile=logFilePath, reportDir=settings.report_dir)
        reportPath = writeReportJson(report, settings.report_dir, f"report_{commandName}_{runId}")
        logEvent(logger, logging.INFO, runId, "report", f"Report written: {reportPath}")

        sys.stdout = originalStdout
        sys.stderr = originalStderr
        closeCommandLogger(logger)

        if exitCode is not None:
            raise typer.Exit(code=exitCode)


def _loadForm(formPath: str, logger: logging.Logger, runId: str) -> PlanFormState | None:
    try:
        return readFormFile(formPath)
    except (OSError, ValueError) as exc:
        logEvent(logger, logging.ERROR, runId, "form", f"Form not readable: {exc}")
        typer.echo(f"ERROR: {exc}", err=True)
        return None


def _reportLoad(report: ReportCollector, planId: str, loaded: PlanLoadResult) -> None:
    kindErrors = list(loaded.kind_errors.values())
    report.add_item(
        status="OK",
        ref=ItemRef(kind="plan", key=planId),
        payload={"used_fallback": loaded.used_fallback, "sources": loaded.sources},
        errors=kindErrors,
        warnings=loaded.warnings,
    )


def reportSubmission(report: ReportCollector, result: SubmissionResult) -> None:
    """
    Назначение:
        Переносит итог submit в отчёт: элемент на каждую операцию,
        ошибки видов и корня, счётчики операций по видам.
    """
    report.set_meta(plan_id=result.plan_id)
    if result.root_error is not None:
        report.add_item(status="FAILED", ref=ItemRef(kind="root", key=result.plan_id), errors=[result.root_error])
    for name, kindResult in result.kinds.items():
        if kindResult.error is not None:
            report.add_item(status="FAILED", ref=ItemRef(kind=name), errors=[kindResult.error])
        for item in kindResult.items:
            errors = []
            if not item.ok:
                errors.append(
                    DiagnosticItem(
                        stage=DiagnosticStage.APPLY,
                        code=item.error_code or ErrorCode.UNEXPECTED_ERROR.value,
                        field=f"{name}.{item.key}",
                        message=item.error_message or "operation failed",
                    )
                )
            report.add_item(
                status="OK" if item.ok else "FAILED",
                ref=ItemRef(kind=name, key=item.key, op=item.op),
                payload={"outcome": item.outcome, "status_code": item.status_code},
                errors=errors,
            )
    if result.warnings:
        report.add_item(status="WARNING", ref=ItemRef(kind="form"), warnings=result.warnings)
    for name, counts in result.op_counts().items():
        report.add_op(name, ok=counts["ok"], failed=counts["failed"], count=counts["count"])
    report.set_context(
        "submission",
        {
            "outcome": result.outcome.value,
            "state": result.state.value,
            "created": result.created,
            "failed_kinds": result.failed_kinds,
            "sensitive_unmatched": result.sensitive_unmatched,
        },
    )
    report.set_status(_OUTCOME_STATUS[result.outcome])


def _previewAsDict(preview: PlanPreview) -> dict[str, Any]:
    return {
        "plan_id": preview.plan_id,
        "op_count": preview.op_count,
        "kinds": {
            name: {
                "to_add": [str(get_spec(name).identity(item)) for item in plan.to_add],
                "to_remove": [str(key) for key in plan.to_remove],
                "replaced": [str(key) for key in plan.replaced],
                "unchanged": plan.unchanged,
            }
            for name, plan in preview.sync_plans.items()
        },
        "errors": {name: error.message for name, error in preview.errors.items()},
        "sensitive_unmatched": preview.desired.sensitive_unmatched,
    }


def runCheckApiCommand(ctx: typer.Context) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    async def probe(logger: logging.Logger) -> int:
        async with buildApiClient(settings, logger, runId) as client:
            start = time.monotonic()
            await AuditPlanGateway(client).list_plans()
            return int((time.monotonic() - start) * 1000)

    def execute(logger, report) -> int:
        try:
            latencyMs = asyncio.run(probe(logger))
        except ApiError as exc:
            logEvent(logger, logging.ERROR, runId, "api", f"API check failed: {exc.message}")
            typer.echo("ERROR: API check failed (see logs/report)", err=True)
            report.set_status(STATUS_FAILED)
            return 2
        logEvent(logger, logging.INFO, runId, "api", f"api ok base_url={settings.base_url} latency_ms={latencyMs}")
        report.set_context("api", {"base_url": settings.base_url, "latency_ms": latencyMs})
        return 0

    runWithReport(ctx=ctx, commandName="check-api", requiresApiAccess=True, runner=execute)


def runPlanShowCommand(ctx: typer.Context, planId: str) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    async def load(logger: logging.Logger) -> PlanLoadResult:
        async with buildApiClient(settings, logger, runId) as client:
            loader = PlanAggregateLoader(AuditPlanGateway(client), logger=logger, run_id=runId)
            try:
                return await loader.load(planId)
            except PlanNotFoundError:
                # detail недоступен: пробуем строку из списка планов
                rows = await loader.fetch_summary_rows()
                row = rows.get(canonical_id(planId) or "")
                if row is None:
                    raise
                return await loader.load(planId, cached_row=row)

    def execute(logger, report) -> int:
        report.set_meta(plan_id=planId)
        bindPlanId(logger, planId)
        try:
            loaded = asyncio.run(load(logger))
        except PlanSyncError as exc:
            code, message = describe_error(exc)
            logEvent(logger, logging.ERROR, runId, "loader", f"Plan {planId} not loaded: {message}")
            typer.echo(f"ERROR: plan {planId} not loaded (see logs/report)", err=True)
            report.add_item(
                status="FAILED",
                ref=ItemRef(kind="plan", key=planId),
                errors=[DiagnosticItem(stage=DiagnosticStage.LOAD, code=code, field="plan", message=message)],
            )
            return 2
        _reportLoad(report, planId, loaded)
        echoJson(aggregate_as_dict(loaded.aggregate))
        return 1 if loaded.kind_errors else 0

    runWithReport(ctx=ctx, commandName="plan-show", requiresApiAccess=True, runner=execute)


def runPlanLoadManyCommand(ctx: typer.Context, planIds: list[str]) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    async def loadMany(logger: logging.Logger):
        async with buildApiClient(settings, logger, runId) as client:
            loader = PlanAggregateLoader(AuditPlanGateway(client), logger=logger, run_id=runId)
            try:
                rows = await loader.fetch_summary_rows()
            except PlanSyncError as exc:
                logEvent(logger, logging.WARNING, runId, "loader", f"Plan list unavailable, no fallback rows: {exc.message}")
                rows = {}
            return await loader.load_many(planIds, concurrency=settings.load_concurrency, cached_rows=rows)

    def execute(logger, report) -> int:
        batch = asyncio.run(loadMany(logger))
        for planId, loaded in batch.loaded.items():
            _reportLoad(report, planId, loaded)
        for planId, error in batch.failed.items():
            report.add_item(status="FAILED", ref=ItemRef(kind="plan", key=planId), errors=[error])
        echoJson(
            {
                "loaded": {planId: aggregate_as_dict(loaded.aggregate) for planId, loaded in batch.loaded.items()},
                "failed": {planId: error.message for planId, error in batch.failed.items()},
            }
        )
        if not batch.failed:
            return 0
        return 1 if batch.loaded else 2

    runWithReport(ctx=ctx, commandName="plan-load-many", requiresApiAccess=True, runner=execute)


def runPlanDiffCommand(ctx: typer.Context, planId: str, formPath: str | None) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    async def preview(logger: logging.Logger, form: PlanFormState) -> PlanPreview:
        async with buildApiClient(settings, logger, runId) as client:
            orchestrator = PlanSubmissionOrchestrator(
                AuditPlanGateway(client),
                logger=logger,
                run_id=runId,
                max_concurrency=settings.max_concurrency,
            )
            return await orchestrator.preview(form, planId)

    def execute(logger, report) -> int:
        report.set_meta(plan_id=planId)
        bindPlanId(logger, planId)
        form = _loadForm(formPath or "", logger, runId)
        if form is None:
            report.set_status(STATUS_FAILED)
            return 2
        result = asyncio.run(preview(logger, form))
        for name, plan in result.sync_plans.items():
            report.add_op(f"{name}.add", count=len(plan.to_add))
            report.add_op(f"{name}.remove", count=len(plan.to_remove))
        for name, error in result.errors.items():
            report.add_item(status="FAILED", ref=ItemRef(kind=name), errors=[error])
        report.add_item(status="OK", ref=ItemRef(kind="plan", key=planId), warnings=result.desired.warnings)
        echoJson(_previewAsDict(result))
        return 1 if result.errors else 0

    runWithReport(
        ctx=ctx,
        commandName="plan-diff",
        requiresApiAccess=True,
        runner=execute,
        formPath=formPath,
        requiresForm=True,
    )


def runPlanSubmitCommand(ctx: typer.Context, formPath: str | None, planId: str | None) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    async def submit(logger: logging.Logger, form: PlanFormState) -> SubmissionResult:
        async with buildApiClient(settings, logger, runId) as client:
            orchestrator = PlanSubmissionOrchestrator(
                AuditPlanGateway(client),
                logger=logger,
                run_id=runId,
                max_concurrency=settings.max_concurrency,
            )
            return await orchestrator.submit(form, existing_plan_id=planId)

    def execute(logger, report) -> int:
        bindPlanId(logger, planId)
        form = _loadForm(formPath or "", logger, runId)
        if form is None:
            report.set_status(STATUS_FAILED)
            return 2
        issues = validate_form(form)
        if issues:
            for issue in issues:
                logEvent(logger, logging.ERROR, runId, "form", f"{issue.field}: {issue.message}")
            report.add_item(status="FAILED", ref=ItemRef(kind="form"), errors=issues)
            typer.echo("ERROR: form is invalid (see logs/report)", err=True)
            return 2

        result = asyncio.run(submit(logger, form))
        bindPlanId(logger, result.plan_id)
        reportSubmission(report, result)
        echoJson(
            {
                "plan_id": result.plan_id,
                "outcome": result.outcome.value,
                "created": result.created,
                "failed_items": [f"{item.kind}.{item.op}:{item.key} {item.error_code}" for item in result.failed_items],
                "failed_kinds": result.failed_kinds,
                "sensitive_unmatched": result.sensitive_unmatched,
            }
        )
        if result.root_error is not None:
            typer.echo(f"ERROR: plan not saved: {result.root_error.message}", err=True)
        return _OUTCOME_EXIT[result.outcome]

    runWithReport(
        ctx=ctx,
        commandName="plan-submit",
        requiresApiAccess=True,
        runner=execute,
        formPath=formPath,
        requiresForm=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier (UUID). If omitted, generated."),
    baseUrl: str | None = typer.Option(None, "--base-url", help="Audit API base URL"),
    apiToken: str | None = typer.Option(None, "--api-token", help="Bearer token (avoid; use env)"),
    timeoutSeconds: float | None = typer.Option(None, "--timeout", help="API timeout in seconds"),
    retries: int | None = typer.Option(None, "--retries", help="Retry attempts for API calls"),
    tlsSkipVerify: bool | None = typer.Option(None, "--tls-skip-verify", help="Disable TLS verification"),
    caFile: str | None = typer.Option(None, "--ca-file", help="CA file path"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    reportDir: str | None = typer.Option(None, "--report-dir", help="Directory for reports."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    maxConcurrency: int | None = typer.Option(None, "--max-concurrency", help="Concurrent add/remove calls per kind"),
    loadConcurrency: int | None = typer.Option(None, "--load-concurrency", help="Plans loaded at once"),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/report
        - сохраняет всё в ctx.obj для подкоманд
    """
    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "base_url": baseUrl,
        "api_token": apiToken,
        "timeout_seconds": timeoutSeconds,
        "retries": retries,
        "tls_skip_verify": tlsSkipVerify,
        "ca_file": caFile,
        "log_dir": logDir,
        "report_dir": reportDir,
        "log_level": logLevel,
        "max_concurrency": maxConcurrency,
        "load_concurrency": loadConcurrency,
    }
    try:
        loaded = loadSettings(configPath=config, cliOverrides=cliOverrides)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=2)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.report_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
        "configPath": config,
    }


@app.command("check-api")
def checkApi(ctx: typer.Context):
    runCheckApiCommand(ctx)


@planApp.command("show")
def planShow(ctx: typer.Context, planId: str = typer.Argument(..., metavar="PLAN_ID")):
    runPlanShowCommand(ctx, planId)


@planApp.command("load-many")
def planLoadMany(ctx: typer.Context, planIds: list[str] = typer.Argument(..., metavar="PLAN_ID...")):
    runPlanLoadManyCommand(ctx, planIds)


@planApp.command("diff")
def planDiff(
    ctx: typer.Context,
    planId: str = typer.Argument(..., metavar="PLAN_ID"),
    form: str | None = typer.Option(None, "--form", help="Path to form file (JSON/YAML)"),
):
    runPlanDiffCommand(ctx, planId, form)


@planApp.command("submit")
def planSubmit(
    ctx: typer.Context,
    form: str | None = typer.Option(None, "--form", help="Path to form file (JSON/YAML)"),
    planId: str | None = typer.Option(None, "--plan-id", help="Existing plan id (update); omit to create"),
):
    runPlanSubmitCommand(ctx, form, planId)


app.add_typer(planApp, name="plan")


if __name__ == "__main__":
    app()
