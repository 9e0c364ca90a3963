#!/usr/bin/env python3
"""
Cooling Post-Process Script.

Run the layer cooling buffer over a G-code file produced by a toolpath
generator that emits the cooling markers.

Usage:
    python -m cooling_control.scripts.postprocess part.gcode -o part.cooled.gcode
    python -m cooling_control.scripts.postprocess part.gcode --config my_cooling.yaml
    python -m cooling_control.scripts.postprocess part.gcode > part.cooled.gcode
    python -m cooling_control.scripts.postprocess part.gcode -o out.gcode --log-level DEBUG --log-file cooling.log

Input structure:
    ;LAYER:<n>          starts layer n
    ;LAYER_CHANGE       starts the next layer (counted from 0)
    ;_OBJECT <id>       starts the contribution of object <id>
    ;_SUPPORT <id>      starts the support contribution of object <id>

Text before the first layer comment is copied unchanged.  A layer
without object tags is a single contribution of object 0.
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path

import yaml

from cooling_control.configs.loader import ConfigError, PrintConfig, load_config
from cooling_control.cooling.buffer import CoolingBuffer
from cooling_control.gcode.writer import GCodeError, GCodeWriter
from src.utils.fs import atomic_write_text
from src.utils.gcode_vm import GCodeVM
from src.utils.logging_config import push_context, setup_logging
from src.utils.validators import MachineProfileV1, load_machine_profile

logger = logging.getLogger(__name__)

DEFAULT_MACHINE_PROFILE = (
    Path(__file__).resolve().parent.parent / "configs" / "machine.yaml"
)

_LAYER_RE = re.compile(r"^\s*;\s*LAYER:\s*(-?\d+)")
_LAYER_CHANGE_RE = re.compile(r"^\s*;\s*LAYER_CHANGE\b")
_PRODUCER_RE = re.compile(r"^\s*;_(OBJECT|SUPPORT)\s+(\d+)")


@dataclass
class _Contribution:
    layer_id: int
    object_id: int | None = None
    is_support: bool = False
    text: str = ""


def _split_contributions(
    lines: list[str],
) -> tuple[str, list[_Contribution]]:
    """Split G-code lines into the preamble and per-producer contributions."""
    preamble: list[str] = []
    contributions: list[_Contribution] = []
    current: _Contribution | None = None
    next_layer = 0

    for line in lines:
        layer = _LAYER_RE.match(line)
        if layer or _LAYER_CHANGE_RE.match(line):
            layer_id = int(layer.group(1)) if layer else next_layer
            next_layer = layer_id + 1
            current = _Contribution(layer_id=layer_id)
            contributions.append(current)
            current.text += line
            continue

        if current is None:
            preamble.append(line)
            continue

        producer = _PRODUCER_RE.match(line)
        if producer:
            object_id = int(producer.group(2))
            is_support = producer.group(1) == "SUPPORT"
            if current.object_id is not None:
                current = _Contribution(layer_id=current.layer_id)
                contributions.append(current)
            # Layer header text travels with the first producer of the layer
            current.object_id = object_id
            current.is_support = is_support

        current.text += line

    return "".join(preamble), contributions


def process_gcode(
    text: str, config: PrintConfig, profile: MachineProfileV1,
) -> str:
    """Apply layer cooling to a complete G-code program.

    Parameters
    ----------
    text : str
        Annotated G-code.
    config : PrintConfig
        Cooling and output settings.
    profile : MachineProfileV1
        Machine profile for the print-time estimator.

    Returns
    -------
    str
        G-code with fan commands inserted, slowed layers rewritten and
        all markers removed.
    """
    vm = GCodeVM(profile)
    buffer = CoolingBuffer(config.cooling, GCodeWriter(config.gcode), vm)

    preamble, contributions = _split_contributions(
        text.splitlines(keepends=True)
    )

    # Start/purge code is not part of any layer
    vm.execute(preamble)
    vm.get_reset_elapsed_time()

    out = [preamble]
    for contribution in contributions:
        vm.execute(contribution.text)
        out.append(
            buffer.append(
                contribution.text,
                contribution.object_id or 0,
                contribution.layer_id,
                contribution.is_support,
            )
        )
    out.append(buffer.flush())

    logger.info(
        "Processed %d contribution(s) into %d layer(s)",
        len(contributions),
        buffer.layers_flushed,
    )
    return "".join(out)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply layer-time based fan control and slowdown to G-code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "input",
        type=str,
        help="Annotated G-code file",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output G-code file (default: stdout)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Cooling configuration file path",
    )
    parser.add_argument(
        "--machine",
        "-m",
        type=str,
        default=str(DEFAULT_MACHINE_PROFILE),
        help="Machine profile for time estimation",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (logs go to stderr)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Also append log records to this file",
    )

    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_file, context={"app": "cooling"})
    push_context(job=Path(args.input).name)

    try:
        config = load_config(args.config)
        profile = load_machine_profile(args.machine)
        text = Path(args.input).read_text(encoding="utf-8")
        result = process_gcode(text, config, profile)
        if args.output:
            atomic_write_text(args.output, result)
            logger.info("G-code written to: %s", args.output)
        else:
            sys.stdout.write(result)
    except (ConfigError, GCodeError, FileNotFoundError, ValueError, yaml.YAMLError) as e:
        logger.error("Post-processing failed: %s", e)
        return 1
    except (OSError, RuntimeError) as e:
        logger.exception("Post-processing failed: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
