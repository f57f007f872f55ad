import os

import uvicorn


def main() -> None:
    """Run the SeedMix API (set SEEDMIX_RELOAD=1 for auto-reload during development)."""
    uvicorn.run(
        "api.main:app",
        host=os.getenv("SEEDMIX_HOST", "127.0.0.1"),
        port=int(os.getenv("SEEDMIX_PORT", "8000")),
        reload=os.getenv("SEEDMIX_RELOAD") == "1",
    )


if __name__ == "__main__":
    main()
