"""Command-line interface for the LabPBR conversion service."""

import argparse
import json
import logging
import os
import sys

from tqdm import tqdm

from .config import ConversionSettings, PipelineConfig, TextureKind
from .core import JobStatus, setup_logging
from .errors import LabBrewError, SettingsError

logger = logging.getLogger("labpbr_pipeline")


def _load_settings(value):
    """Read settings from a JSON file path or an inline JSON object."""
    if not value:
        return ConversionSettings()
    if os.path.isfile(value):
        with open(value, "r", encoding="utf-8") as f:
            text = f.read()
    else:
        text = value
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SettingsError(f"settings is not valid JSON: {e.msg}") from e
    return ConversionSettings.from_dict(data)


def _read_input(path: str) -> bytes:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(path, "rb") as f:
        return f.read()


def _cmd_convert(args, config: PipelineConfig) -> int:
    from .pipeline import ConversionPipeline

    settings = _load_settings(args.settings)
    data = _read_input(args.input)
    filename = os.path.basename(args.input)

    with tqdm(total=0, desc=filename, unit="file", disable=args.quiet) as pbar:
        def _progress(job_id, done, total):
            pbar.total = total
            pbar.n = done
            pbar.refresh()

        with ConversionPipeline(config, progress_callback=_progress) as pipeline:
            job = pipeline.create_job(filename, settings)
            job = pipeline.run_job(job.id, data)
            output = pipeline.repository.get_output(job.id)
            files = pipeline.repository.list_files(job.id)

    if job.status != JobStatus.COMPLETED or output is None:
        for message in job.errors:
            print(f"Error: {message}")
        return 1

    out_name, archive = output
    dest = args.output or out_name
    if os.path.isdir(dest):
        dest = os.path.join(dest, out_name)
    os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
    with open(dest, "wb") as f:
        f.write(archive)

    counts = {}
    for record in files:
        counts[record.validation_status] = counts.get(record.validation_status, 0) + 1
    print(f"Wrote {dest} ({len(files)} file(s): "
          + ", ".join(f"{v} {k}" for k, v in sorted(counts.items())) + ")")
    for message in job.warnings:
        print(f"Warning: {message}")
    return 0


def _cmd_validate(args, config: PipelineConfig) -> int:
    from .phases.validate import ChannelValidator
    from .service import LabBrewService

    data = _read_input(args.input)
    filename = os.path.basename(args.input)
    if args.kind and not filename.lower().endswith(".zip"):
        result = ChannelValidator(config.validation).validate_bytes(
            data, TextureKind(args.kind), max_pixels=config.max_image_pixels,
        )
        report = {**result.to_dict(), "totalFiles": 1, "textureFiles": 1}
        issues = [{**i, "filename": filename, "path": filename} for i in report["issues"]]
        report["issues"] = issues
    else:
        with LabBrewService(config) as service:
            report = service.validate_upload(filename, data)

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(f"{filename}: {'valid' if report['isValid'] else 'INVALID'} "
              f"(LabPBR {report['version']}, {report['textureFiles']} texture(s))")
        for issue in report["issues"]:
            print(f"  [{issue['level']}] {issue['path']}: {issue['message']}")
    return 0 if report["isValid"] else 1


def _cmd_analyze(args, config: PipelineConfig) -> int:
    from .core.buffers import decode_image
    from .phases.analyze import analyze_specular

    data = _read_input(args.input)
    report = analyze_specular(decode_image(data, max_pixels=config.max_image_pixels))
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print(f"{os.path.basename(args.input)}: {report.width}x{report.height}")
    print(f"  smoothness (R) avg: {report.avg_red:.1f} ({report.avg_red_pct:.1f}%)")
    print(f"  F0 coverage: {report.green_f0_coverage_pct:.1f}%  "
          f"metal coverage: {report.green_metal_coverage_pct:.1f}%")
    if report.closest_material is not None:
        match = report.closest_material
        print(f"  closest material: {match.name} ({match.category}, "
              f"F0 {match.f0}, diff {match.difference:.1f})")
    if report.top_metal_name:
        print(f"  dominant metal: {report.top_metal_name} ({report.top_metal_code})")
    for warning in report.warnings:
        print(f"  warning: {warning}")
    return 0


def _cmd_serve(args, config: PipelineConfig) -> int:
    from .web import create_app

    app = create_app(config=config)
    logger.info("Serving on http://%s:%d", args.host, args.port)
    app.run(host=args.host, port=args.port, debug=False, threaded=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="LabBrew",
        description="LabPBR texture conversion and validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  LabBrew convert stone.png -o stone_labpbr.zip
  LabBrew convert pack.zip -o out/ --settings '{"normalStrength": 2.0}'
  LabBrew validate stone_s.png --kind specular
  LabBrew analyze stone_s.png --json
  LabBrew serve --port 5000
  LabBrew --generate-config
        """
    )
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--generate-config", action="store_true",
                        help="Generate default config.yaml")

    sub = parser.add_subparsers(dest="command")

    convert = sub.add_parser("convert", help="Convert an image or resource pack")
    convert.add_argument("input", help="Source image or .zip resource pack")
    convert.add_argument("--output", "-o", help="Output .zip path or directory")
    convert.add_argument("--settings", "-s",
                         help="Conversion settings as a JSON file or inline JSON")
    convert.add_argument("--quiet", "-q", action="store_true",
                         help="Hide the progress bar")

    validate = sub.add_parser("validate", help="Validate textures against LabPBR 1.3")
    validate.add_argument("input", help="Texture or .zip resource pack")
    validate.add_argument("--kind", choices=[k.value for k in TextureKind],
                          help="Texture kind (default: from filename suffix)")
    validate.add_argument("--json", action="store_true", help="Print the JSON report")

    analyze = sub.add_parser("analyze", help="Identify the material of a specular texture")
    analyze.add_argument("input", help="Specular texture")
    analyze.add_argument("--json", action="store_true", help="Print the JSON report")

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    return parser


_COMMANDS = {
    "convert": _cmd_convert,
    "validate": _cmd_validate,
    "analyze": _cmd_analyze,
    "serve": _cmd_serve,
}


def main():
    """Parse CLI arguments and dispatch to the selected sub-command."""
    parser = build_parser()
    args = parser.parse_args()

    if args.generate_config:
        dest = args.config or "config.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "config.yaml")
        PipelineConfig().to_yaml(dest)
        logger.info("Generated default %s", dest)
        print(f"Generated default {dest}")
        return

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Ensure early validation warnings from from_yaml() are visible on stderr
    # before the configured logging is set up.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = PipelineConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = PipelineConfig()

    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config.log_level, config.log_file or None)

    try:
        code = _COMMANDS[args.command](args, config)
    except SettingsError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except (LabBrewError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        sys.exit(130)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
