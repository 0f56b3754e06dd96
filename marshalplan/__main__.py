import argparse
import json
import sys

from marshalplan import ResolutionPass
from marshalplan import logging as marshalplan_logging
from marshalplan import utils
from marshalplan.analyzer import RecursiveLayoutError
from marshalplan.plan import render_json_report, render_text_report
from marshalplan.type_model import load_type_graph, parse_type_ref


def _add_common_arguments(parser):
    parser.add_argument(
        'graph',
        type=str,
        help='The path to the type graph json file exported by the host compiler'
    )

    parser.add_argument(
        '--config',
        '-c',
        type=str,
        dest='config_file',
        help='The configuration file to use'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        help='Console log level, overrides [logging] console_level'
    )

    parser.add_argument(
        '--log-dir',
        type=str,
        default=None,
        help='Write text (and optionally jsonl) logs into this directory'
    )

    parser.add_argument(
        '--no-color',
        action='store_true',
        help='Disable colored console logs'
    )


def parse_resolve(parser):
    _add_common_arguments(parser)

    parser.add_argument(
        '--format',
        '-f',
        choices=['text', 'json'],
        default=None,
        help='Report format, default to [report] format from the configuration'
    )

    parser.add_argument(
        '--output',
        '-o',
        type=str,
        default=None,
        help='Write the report to this path instead of stdout'
    )

    parser.add_argument(
        '--workers',
        '-j',
        type=int,
        default=None,
        help='Number of worker threads, default to [resolution] max_workers'
    )


def parse_classify(parser):
    _add_common_arguments(parser)

    parser.add_argument(
        'type',
        type=str,
        help='The type to classify, e.g. "Box<int>"'
    )


def parse_check_shape(parser):
    _add_common_arguments(parser)

    parser.add_argument(
        'native_type',
        type=str,
        help='The native shadow type to validate'
    )

    parser.add_argument(
        'managed_type',
        type=str,
        help='The managed type the shadow converts'
    )


def _configure_logging_from_args(config, args):
    marshalplan_logging.configure_logging(
        config,
        console_level=args.log_level,
        log_dir=args.log_dir,
        color=not args.no_color,
    )


def _load(parser, args):
    try:
        config = utils.try_load_config(args.config_file)
    except (FileNotFoundError, TypeError, ValueError) as e:
        parser.error(str(e))
    _configure_logging_from_args(config, args)
    try:
        graph = load_type_graph(args.graph)
    except (FileNotFoundError, ValueError) as e:
        parser.error(str(e))
    return config, graph


def resolve(parser, args):
    config, graph = _load(parser, args)
    if args.workers is not None and args.workers < 1:
        parser.error('--workers must be at least 1')

    resolution = ResolutionPass(graph.catalog, config=config, max_workers=args.workers)
    result = resolution.run(graph.use_sites)

    report_format = args.format or config.get('report', {}).get('format', 'text')
    if report_format == 'json':
        report = render_json_report(result.plans, result.definition_diagnostics)
    else:
        report = render_text_report(result.plans, result.definition_diagnostics)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(report)
    else:
        print(report)

    sys.exit(1 if result.any_fatal else 0)


def classify(parser, args):
    config, graph = _load(parser, args)
    try:
        type_ref = parse_type_ref(args.type)
    except ValueError as e:
        parser.error(str(e))

    resolution = ResolutionPass(graph.catalog, config=config, max_workers=1)
    try:
        verdict = resolution.analyzer.classify(type_ref)
    except RecursiveLayoutError as e:
        print(f'❌ {type_ref}: {e}', file=sys.stderr)
        sys.exit(1)

    print(f'{type_ref}: {verdict.kind.value}')
    for reason in verdict.reasons:
        print(f'  - {reason}')
    sys.exit(0)


def check_shape(parser, args):
    config, graph = _load(parser, args)
    try:
        native_type = parse_type_ref(args.native_type)
        managed_type = parse_type_ref(args.managed_type)
    except ValueError as e:
        parser.error(str(e))

    resolution = ResolutionPass(graph.catalog, config=config, max_workers=1)
    result = resolution.shape_validator.validate(native_type, managed_type)
    print(json.dumps(result.descriptor.to_dict(), indent=2))
    for diagnostic in result.diagnostics:
        print(f'  - {diagnostic}', file=sys.stderr)

    if result.valid:
        print(f'✅ {native_type} is a valid native type for {managed_type}')
        sys.exit(0)
    print(f'❌ {native_type} is not a valid native type for {managed_type}', file=sys.stderr)
    sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description='marshalplan: resolve how managed types cross the native boundary'
    )

    subparsers = parser.add_subparsers(
        dest='subcommand',
        description='valid subcommands',
        help='Use one of these subcommands followed by -h for additional help',
        required=True
    )

    resolve_parser = subparsers.add_parser(
        'resolve',
        help='Build a marshalling plan for every use site in the type graph'
    )

    classify_parser = subparsers.add_parser(
        'classify',
        help='Classify the blittability of one type'
    )

    check_shape_parser = subparsers.add_parser(
        'check-shape',
        help='Validate the conversion contract of a native shadow type'
    )

    parse_resolve(resolve_parser)
    parse_classify(classify_parser)
    parse_check_shape(check_shape_parser)

    args = parser.parse_args()

    match args.subcommand:
        case 'resolve':
            resolve(parser, args)
        case 'classify':
            classify(parser, args)
        case 'check-shape':
            check_shape(parser, args)
        case _:
            parser.print_help()


if __name__ == '__main__':
    main()
