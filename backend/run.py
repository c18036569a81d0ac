"""
Quick start script for running the backend server.
Handles basic environment checks before starting.
"""

import os
import sys
import signal
import time
import argparse
from pathlib import Path


# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global shutdown_requested
    if not shutdown_requested:
        shutdown_requested = True
        print("\n\n" + "=" * 60)
        print("  Shutdown signal received. Stopping server...")
        print("=" * 60)
        sys.exit(0)


def check_env_file():
    """Check if .env file exists and has required variables."""
    env_path = Path(__file__).parent / ".env"

    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)

    gemini_key = os.getenv("GEMINI_API_KEY")
    if not gemini_key or gemini_key == "your_gemini_api_key_here":
        print("ERROR: GEMINI_API_KEY is not configured!")
        print("\nSet it in the environment or in backend/.env:")
        print("  GEMINI_API_KEY=your_gemini_api_key_here")
        print("  - Get API key: https://aistudio.google.com/app/apikey")
        return False

    if not os.getenv("TRANSCRIPTION_API_KEY"):
        print("WARNING: TRANSCRIPTION_API_KEY is not set; transcription requests will be unauthenticated")

    storage = os.getenv("STORAGE_BACKEND", "memory").lower()
    if storage == "memory":
        print("WARNING: STORAGE_BACKEND=memory, rooms and evaluations are lost on restart")

    print("✓ Environment configuration looks good")
    return True


def check_dependencies():
    """Check if required packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "httpx",
        "langchain_core",
        "langchain_google_genai",
        "tenacity",
        "pymongo",
        "prometheus_client",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print(f"ERROR: Missing required packages: {', '.join(missing)}")
        print("\nPlease install dependencies:")
        print("  pip install -e .")
        return False

    print("✓ All dependencies are installed")
    return True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Interview Rooms - Backend Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Candidates join a room by share link and record one continuous video session over
the interview WebSocket; each finished session is transcribed and scored against
the room's criteria in the background.
        """
    )
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    args = parser.parse_args()

    print("=" * 60)
    print("  Interview Rooms - Backend Server")
    print("=" * 60)
    print()

    if not check_dependencies():
        sys.exit(1)

    if not check_env_file():
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    enable_reload = os.getenv("UVICORN_RELOAD", "false").lower() == "true"

    print()
    print("Starting server...")
    print()
    print("API will be available at:")
    print(f"  - http://localhost:{args.port}")
    print(f"  - API docs: http://localhost:{args.port}/docs")
    print(f"  - Interview WebSocket: ws://localhost:{args.port}/ws/interview/<room_id>?email=...")
    print()
    if enable_reload:
        print("NOTE: Auto-reload is ENABLED (UVICORN_RELOAD=true)")
    print("Press CTRL+C to stop the server")
    print("=" * 60)
    print()

    import uvicorn
    uvicorn.run(
        "interview_rooms.main:app",
        host="0.0.0.0",
        port=args.port,
        reload=enable_reload,
        log_level="info",
        timeout_graceful_shutdown=5
    )


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\n" + "=" * 60)
        print("  Server stopped by user (CTRL+C)")
        print("=" * 60)
        time.sleep(0.5)
        sys.exit(0)
    except SystemExit:
        pass
    except Exception as e:
        print("\n\n" + "=" * 60)
        print(f"  ERROR: {str(e)}")
        print("=" * 60)
        sys.exit(1)
