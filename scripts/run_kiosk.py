#!/usr/bin/env python3
"""Attendance kiosk: enroll people and scan them via webcam.

Templates and attendance are kept in memory for the lifetime of the
process, so enroll and scan in the same run.

Usage:
    python scripts/run_kiosk.py --enroll alice:"Alice Smith" --scan
    python scripts/run_kiosk.py --enroll alice --enroll bob --scan --camera 1
    python scripts/run_kiosk.py --enroll alice --scan --image photo.jpg
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from attendface.backends import create_components
from attendface.config import Config
from attendface.enrollment import EnrollmentStep
from attendface.exceptions import InitializationFailure
from attendface.interfaces import IdentityProfile
from attendface.logging_config import setup_logging
from attendface.services.recognition import ScanResult, ScanStatus
from attendface.session import EnrollmentSession, ScanSession
from attendface.stores import (
    MemoryAttendanceStore,
    MemoryIdentityStore,
    MemoryRecognitionLog,
    MemoryTemplateStore,
)
from attendface.video_io import ImageFileSource, WebcamSource

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Face-verification attendance kiosk",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--enroll",
        action="append",
        default=[],
        metavar="ID[:NAME]",
        help="Enroll an identity before scanning (repeatable)",
    )

    parser.add_argument(
        "--scan",
        action="store_true",
        help="Run an attendance scan after enrollment",
    )

    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera device ID (overrides .env CAMERA_ID value)",
    )

    parser.add_argument(
        "--image",
        type=str,
        default=None,
        help="Scan a still image instead of the camera (liveness will reject it)",
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Match threshold (overrides .env THRESH value)",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for each enrollment or scan",
    )

    return parser.parse_args()


def print_section(title: str) -> None:
    """Print a section divider."""
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


def wait_for(session, timeout: float) -> bool:
    """Block until ``session`` stops itself or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while session.is_active and time.monotonic() < deadline:
        time.sleep(0.1)
    finished = not session.is_active
    session.stop()
    return finished


def show_step(step: EnrollmentStep) -> None:
    if step.accepted:
        print(f"  ✓ {step.message}")


def show_result(result: ScanResult) -> None:
    if result.status is ScanStatus.MATCHED:
        print(f"  ✓ {result.message}")
    elif result.status is ScanStatus.NO_MATCH:
        print(f"  ✗ {result.message}")


def main() -> None:
    """Main function."""
    args = parse_args()

    if not args.enroll and not args.scan:
        print("Nothing to do: pass --enroll and/or --scan")
        return

    config = Config.from_env()
    if args.threshold is not None:
        config.thresh = args.threshold
    camera_id = args.camera if args.camera is not None else config.camera_id
    logger.info(f"Loaded config: {config}")

    print_section("Attendance Kiosk")
    print(f"Source:        {args.image or f'camera {camera_id}'}")
    print(f"Threshold:     {config.thresh:.2f}")
    print(f"Device:        {config.device_descriptor}")

    templates = MemoryTemplateStore()
    attendance = MemoryAttendanceStore()
    audit_log = MemoryRecognitionLog()
    identities = MemoryIdentityStore()

    print_section("Step 1: Loading Models")
    try:
        components = create_components(config, templates, attendance, audit_log, identities)
        if args.image:
            source = ImageFileSource(args.image)
        else:
            source = WebcamSource(camera_id=camera_id)
    except InitializationFailure as e:
        logger.error(f"Initialization failed: {e}")
        print(f"❌ Error: {e}")
        return
    print("✓ Models loaded")

    try:
        for entry in args.enroll:
            identity, _, name = entry.partition(":")
            identities.add(IdentityProfile(identity=identity, full_name=name or identity))

            print_section(f"Enrolling {name or identity}")
            print("Look at the camera, blink and move your head slightly")

            session = EnrollmentSession(
                components.enrollment,
                source,
                identity,
                interval=config.enroll_interval_ms / 1000.0,
                on_step=show_step,
            )
            session.start()
            wait_for(session, args.timeout)

            if session.template is not None:
                print(f"✓ Enrolled {identity} from {session.template.num_samples} captures")
            elif session.error:
                print(f"❌ Enrollment failed, please restart capture: {session.error}")
            else:
                print(f"❌ Enrollment timed out ({session.progress:.0%} captured)")

        if args.scan:
            print_section("Scanning")
            session = ScanSession(
                components.recognition,
                source,
                templates,
                interval=config.scan_interval_ms / 1000.0,
                io_guard=components.io_guard,
                on_result=show_result,
            )
            try:
                session.start()
            except InitializationFailure as e:
                print(f"❌ {e}")
                return

            print("Look at the camera")
            if not wait_for(session, args.timeout):
                print("Scan timed out")

            result = session.last_result
            if result is not None and result.attendance is not None and result.attendance.pending:
                outcome = components.recognition.attendance.retry(result.attendance)
                print(f"Retried pending attendance: {outcome.status.value}")

        components.io_guard.flush()

        print_section("Summary")
        print(f"Enrolled:            {len(templates)}")
        print(f"Attendance events:   {len(attendance)}")
        print(f"Recognition attempts: {len(audit_log)}")

    except KeyboardInterrupt:
        print("\nInterrupted by user")

    finally:
        source.release()
        components.io_guard.shutdown()
        close = getattr(components.analyzer, "close", None)
        if close is not None:
            close()
        logger.info("Kiosk stopped")


if __name__ == "__main__":
    main()
