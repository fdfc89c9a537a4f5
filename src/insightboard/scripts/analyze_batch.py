"""CLI for analysing topics or documents without going through the request queue."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from insightboard.config import Settings
from insightboard.errors import ServiceError
from insightboard.extraction import extract_text, format_file_size
from insightboard.gateway import AIGateway, analyze
from insightboard.models import AnalysisRequest, FileInfo, ModelParams


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate insights for topics or files")
    parser.add_argument("inputs", nargs="+", help="Topics, or file paths when --files is set")
    parser.add_argument("--files", action="store_true", help="Treat inputs as document paths")
    parser.add_argument("--model", default=None, help="Model name (defaults to OLLAMA_MODEL)")
    parser.add_argument("--temperature", type=float, default=None, help="Sampling temperature 0.0-1.0")
    parser.add_argument("--language", default=None, help="Response language (defaults to ANALYSIS_LANGUAGE)")
    parser.add_argument("--mock", action="store_true", help="Use the offline mock generator")
    parser.add_argument("--output", type=Path, default=None, help="Write results as JSON to this file")
    return parser


def build_requests(args: argparse.Namespace, settings: Settings) -> list[AnalysisRequest]:
    params = ModelParams.from_payload(
        {"model": args.model, "temperature": args.temperature},
        default_model=settings.ollama_model,
        default_temperature=settings.ollama_temperature,
    )
    language = args.language or settings.analysis_language
    if not args.files:
        return [AnalysisRequest(topic=item, language=language, model_params=params) for item in args.inputs]

    requests: list[AnalysisRequest] = []
    for item in args.inputs:
        path = Path(item)
        data = path.read_bytes()
        extracted = extract_text(data, path.name)
        requests.append(
            AnalysisRequest(
                topic=extracted.text,
                language=language,
                model_params=params,
                file_info=FileInfo(
                    name=path.name,
                    size_label=format_file_size(len(data)),
                    char_count=len(extracted.text),
                ),
            )
        )
    return requests


async def run(args: argparse.Namespace, settings: Settings) -> list[dict]:
    config = settings.gateway_config()
    if args.mock:
        config = replace(config, use_mock_data=True)
    gateway = AIGateway(config, metrics=settings.build_metrics_recorder())
    results: list[dict] = []
    try:
        for source, request in zip(args.inputs, build_requests(args, settings)):
            try:
                result = await analyze(request, gateway=gateway, validation=settings.validation_options())
            except ServiceError as exc:
                results.append({"input": source, "error": exc.to_payload()})
                continue
            results.append({"input": source, "result": result.to_payload()})
    finally:
        await gateway.aclose()
    return results


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings.from_env()
    try:
        results = asyncio.run(run(args, settings))
    except (OSError, ValueError) as exc:
        parser.error(str(exc))
        return 2

    rendered = json.dumps(results, indent=2, ensure_ascii=False)
    if args.output is None:
        sys.stdout.write(rendered + "\n")
    else:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered, encoding="utf-8")
        print(f"Wrote {len(results)} results -> {args.output}")
    return 1 if any("error" in item for item in results) else 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
