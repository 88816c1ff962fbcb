#!/usr/bin/env python
"""
Run the RBS content service API.
"""
import uvicorn
from rbs_site.api_server import create_site_app
from rbs_site.config import Config


def main():
    """Run the API server."""
    # Load configuration
    config = Config()

    app = create_site_app(config=config)

    print("Starting content service...")
    print(f"Storage backend: {config.kv_storage_type}")
    print(f"Listening on http://{config.api_host}:{config.api_port}")

    # Run uvicorn server
    uvicorn.run(
        app,
        host=config.api_host,
        port=config.api_port,
        log_level="info"
    )


if __name__ == "__main__":
    main()
