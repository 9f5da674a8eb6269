"""Entry point for the document analysis server."""

import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Document analysis server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument(
        "--locale",
        choices=["auto", "zh-CN", "en"],
        default=None,
        help="Rule set for local analysis (default: auto). Overrides ANALYSIS_LOCALE env var.",
    )
    parser.add_argument(
        "--document-store",
        choices=["memory", "postgres"],
        default=None,
        help="Where documents and tasks are kept (default: memory). Overrides DOCUMENT_STORE env var.",
    )
    args = parser.parse_args()

    if args.locale:
        os.environ["ANALYSIS_LOCALE"] = args.locale
    if args.document_store:
        os.environ["DOCUMENT_STORE"] = args.document_store

    from doc_analysis_server.server import app

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
