import argparse
import asyncio
import random
import sys

import uvicorn

from face_doorlock.camera import FrameSource
from face_doorlock.capture import CaptureStateMachine
from face_doorlock.config import CAMERA_INDEX, REGISTRY_BACKEND, REGISTRY_PATH
from face_doorlock.enrollment import EnrollmentService
from face_doorlock.exceptions import DoorLockError
from face_doorlock.logger import setup_logger
from face_doorlock.recognition import RecognitionSimulator
from face_doorlock.registry import UserRegistry
from face_doorlock.session import AccessSession
from face_doorlock.storage import create_storage


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Face Recognition Door Lock demo"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    web = subparsers.add_parser("web", help="Serve the capture and user management API")
    web.add_argument("--host", default="127.0.0.1", help="Host interface")
    web.add_argument("--port", type=int, default=8000, help="Port")
    web.add_argument("--camera", type=int, default=None, help="Camera index override")

    enroll = subparsers.add_parser("enroll", help="Capture a reference photo and register a user")
    enroll.add_argument("--id", required=True, dest="employee_id", help="Employee ID")
    enroll.add_argument("--name", required=True, help="Full name")
    enroll.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")

    recognize = subparsers.add_parser("recognize", help="Run one smart capture and simulated recognition")
    recognize.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")
    recognize.add_argument(
        "--manual",
        action="store_true",
        help="Capture immediately without the presence check",
    )
    recognize.add_argument("--seed", type=int, default=None, help="Seed for the simulated matcher")

    list_cmd = subparsers.add_parser("list-users", help="List registered users")
    list_cmd.add_argument("--limit", type=int, default=100, help="Max rows to print")

    delete = subparsers.add_parser("delete-user", help="Delete a registered user by record id")
    delete.add_argument("--user-id", required=True, help="Record id shown by list-users")

    return parser


def build_registry() -> UserRegistry:
    return UserRegistry(create_storage(REGISTRY_BACKEND, REGISTRY_PATH))


async def enroll_user(registry: UserRegistry, employee_id: str, name: str, camera_index: int) -> int:
    machine = CaptureStateMachine(FrameSource(camera_index), auto_tick=False)
    service = EnrollmentService(registry=registry, machine=machine)
    try:
        if not await service.start_camera():
            print(f"Error: {machine.notice}")
            return 1
        service.capture()
        record = await service.save(name=name, employee_id=employee_id)
    finally:
        service.reset_form()

    print(f"{service.last_message} {record.name} ({record.employee_id}) id={record.id}")
    return 0


async def recognize_once(registry: UserRegistry, camera_index: int, manual: bool, seed) -> int:
    recognizer = RecognitionSimulator(rng=random.Random(seed) if seed is not None else None)
    machine = CaptureStateMachine(FrameSource(camera_index))
    session = AccessSession(machine=machine, registry=registry, recognizer=recognizer, auto_recognize=False)
    try:
        if not await session.start_camera():
            print(f"Error: {machine.notice}")
            return 1

        if manual:
            await session.capture_now()
        else:
            if not await session.smart_capture():
                print(machine.notice)
                return 1
            print(f"Face detected. Capturing in {machine.countdown}...")
            if await machine.wait_for_capture() is None:
                print("Capture cancelled.")
                return 1

        print("Processing face recognition...")
        result = await session.identify()
    finally:
        session.reset()

    if result is None:
        print("Recognition discarded.")
        return 1
    print(f"{result.title} | Confidence: {result.confidence * 100:.1f}%")
    print(result.message)
    if result.user is not None:
        print(f"Employee ID: {result.user.employee_id}")
    return 0 if result.success else 2


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")

    try:
        if args.command == "web":
            from face_doorlock.web_app import create_web_app

            app = create_web_app(camera_index=args.camera)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

        if args.command == "enroll":
            return asyncio.run(enroll_user(build_registry(), args.employee_id, args.name, args.camera))

        if args.command == "recognize":
            return asyncio.run(recognize_once(build_registry(), args.camera, args.manual, args.seed))

        if args.command == "list-users":
            records = build_registry().list()
            if not records:
                print("No users registered yet")
                return 0

            print(f"Registered Users ({len(records)})")
            print(f"{'Record ID':<34} {'Employee ID':<16} {'Registered':<26} Name")
            print("-" * 96)
            for record in records[: args.limit]:
                registered = record.registered_at.isoformat(timespec="seconds")
                print(f"{record.id:<34} {record.employee_id:<16} {registered:<26} {record.name}")
            return 0

        if args.command == "delete-user":
            removed = build_registry().remove(args.user_id)
            print("User deleted." if removed else f"No user with id {args.user_id}.")
            return 0

    except DoorLockError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
