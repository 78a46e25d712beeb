#!/usr/bin/env python3
"""
Generation Orchestrator - Main Entry Point

Usage:
    # Full diagnostic for one key
    python main.py health --api-key AIza...

    # Claim the first healthy pool key for a user
    python main.py auto-select --user-id 42

    # Generate images / a video
    python main.py image --user-id 42 --prompt "A red fox in snow"
    python main.py video --user-id 42 --prompt "A lighthouse at dusk" --aspect-ratio 9:16
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("orchestrator")

STATUS_ICONS = {
    "operational": "OK  ",
    "degraded": "WARN",
    "error": "FAIL",
}


async def _runtime(user_id: Optional[str], api_key: Optional[str] = None):
    from services.credentials import Credential, CredentialOrigin
    from services.runtime import create_runtime

    runtime = await create_runtime(user_id=user_id)
    if api_key:
        runtime.pool.set_active(Credential(secret=api_key, origin=CredentialOrigin.PERSONAL))
    return runtime


async def run_health(api_key: str) -> bool:
    """Run the text/image/video diagnostic and print one line per service."""
    from core.config import get_config
    from services.credentials import AuthTokenSet
    from services.health import HealthProber, HealthStatus

    config = get_config()
    tokens = AuthTokenSet()
    runtime = None
    if config.database.url:
        runtime = await _runtime(None)
        tokens = runtime.pool.get_auth_tokens()
    else:
        logger.warning("DATABASE_URL not set; video check runs without auth tokens")

    prober = runtime.prober if runtime else HealthProber(config=config)
    try:
        results = await prober.run_api_health_check(api_key, tokens)
    finally:
        if runtime:
            await runtime.close()
        else:
            await prober.veo_client.close()

    for result in results:
        line = f"[{STATUS_ICONS[result.status.value]}] {result.service} ({result.model}): {result.message}"
        if result.details:
            line += f" {result.details}"
        print(line)

    return all(r.status != HealthStatus.ERROR for r in results)


async def run_auto_select(user_id: str) -> bool:
    from services.repair import RepairKind, RepairState

    runtime = await _runtime(user_id)
    try:
        status = await runtime.repair.run(RepairKind.API_KEY)
    finally:
        await runtime.close()

    print(status.message)
    return status.state == RepairState.SUCCESS


async def run_image(
    user_id: Optional[str],
    prompt: str,
    negative_prompt: Optional[str],
    output_dir: str,
    api_key: Optional[str] = None,
) -> bool:
    runtime = await _runtime(user_id, api_key)
    try:
        images = await runtime.orchestrator.generate_images(prompt, negative_prompt)
    finally:
        await runtime.close()

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time())
    for index, image in enumerate(images, start=1):
        path = out / f"image-{stamp}-{index}.png"
        path.write_bytes(image)
        logger.info(f"Saved {path}")
    return bool(images)


async def run_video(
    user_id: Optional[str],
    prompt: str,
    model: Optional[str],
    aspect_ratio: str,
    negative_prompt: str,
    image_path: Optional[str],
    output_dir: str,
) -> bool:
    from services.transport import MediaInput

    image = None
    if image_path:
        suffix = Path(image_path).suffix.lower()
        mime_type = "image/jpeg" if suffix in (".jpg", ".jpeg") else "image/png"
        image = MediaInput(data=Path(image_path).read_bytes(), mime_type=mime_type)

    runtime = await _runtime(user_id)
    try:
        result = await runtime.orchestrator.generate_video(
            prompt,
            model=model,
            aspect_ratio=aspect_ratio,
            negative_prompt=negative_prompt,
            image=image,
        )
        print(f"Stream: {result.video_url}")
        if result.thumbnail_url:
            print(f"Thumbnail: {result.thumbnail_url}")

        data = await result.artifact_task if result.artifact_task else None
    finally:
        await runtime.close()

    if not data:
        logger.warning("Video streamed but could not be downloaded")
        return True

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / f"video-{int(time.time())}.mp4"
    path.write_bytes(data)
    logger.info(f"Saved {path}")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Generation Orchestrator - credential-resilient generative AI calls",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py health --api-key AIza...
    python main.py auto-select --user-id 42
    python main.py image --user-id 42 --prompt "A red fox in snow" --negative "blurry"
    python main.py video --user-id 42 --prompt "A lighthouse at dusk" --image ref.png
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    health_parser = subparsers.add_parser("health", help="Run the full API health check")
    health_parser.add_argument("--api-key", required=True, help="API key to check")

    select_parser = subparsers.add_parser("auto-select", help="Claim the first healthy pool key")
    select_parser.add_argument("--user-id", required=True, help="User to claim the key for")

    image_parser = subparsers.add_parser("image", help="Generate images")
    image_parser.add_argument("--user-id", help="Calling user")
    image_parser.add_argument("--api-key", help="Personal API key to use")
    image_parser.add_argument("--prompt", "-p", required=True, help="Image prompt")
    image_parser.add_argument("--negative", "-n", help="Things to avoid in the image")
    image_parser.add_argument("--output", "-o", default="./output", help="Output directory")

    video_parser = subparsers.add_parser("video", help="Generate a video")
    video_parser.add_argument("--user-id", help="Calling user")
    video_parser.add_argument("--prompt", "-p", required=True, help="Video prompt")
    video_parser.add_argument("--model", "-m", help="Video model")
    video_parser.add_argument(
        "--aspect-ratio",
        "-a",
        choices=["16:9", "9:16", "1:1", "4:3", "3:4"],
        default="16:9",
        help="Aspect ratio",
    )
    video_parser.add_argument("--negative", "-n", default="", help="Negative prompt")
    video_parser.add_argument("--image", "-i", help="Reference image path")
    video_parser.add_argument("--output", "-o", default="./output", help="Output directory")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from core.config import get_config

    for issue in get_config().validate():
        logger.warning(issue)

    try:
        if args.command == "health":
            ok = asyncio.run(run_health(args.api_key))

        elif args.command == "auto-select":
            ok = asyncio.run(run_auto_select(args.user_id))

        elif args.command == "image":
            ok = asyncio.run(
                run_image(args.user_id, args.prompt, args.negative, args.output, args.api_key)
            )

        elif args.command == "video":
            ok = asyncio.run(
                run_video(
                    args.user_id,
                    args.prompt,
                    args.model,
                    args.aspect_ratio,
                    args.negative,
                    args.image,
                    args.output,
                )
            )
        else:
            parser.print_help()
            ok = False

    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        ok = False

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
