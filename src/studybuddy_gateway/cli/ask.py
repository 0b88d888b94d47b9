"""Send one question through the generation pipeline from the command line.

Skips HTTP and identity verification; useful for checking API keys and the
configured rotation policy.
"""
from __future__ import annotations
import argparse
import logging
import sys
import time

from studybuddy_gateway.common.config import load_settings
from studybuddy_gateway.common.errors import ConfigError, GatewayError
from studybuddy_gateway.common.logging_setup import setup_logging
from studybuddy_gateway.common.templates import load_template, render_prompt
from studybuddy_gateway.gateway.dispatch import build_dispatcher

LOGGER = logging.getLogger("studybuddy.cli.ask")

def ask(question: str, cfg_path: str | None = None) -> str:
    """
    Render the Study Buddy prompt for a question and generate an answer.

    Args:
        question: User question.
        cfg_path: Optional YAML config path overriding $GATEWAY_CONFIG.
    """
    settings = load_settings(cfg_path=cfg_path)
    dispatcher = build_dispatcher(settings)
    prompt = render_prompt(load_template(), question)

    start = time.time()
    text = dispatcher.generate(prompt)
    latency_ms = int((time.time() - start) * 1000)
    LOGGER.info("Latency: %sms | model=%s rotation=%s", latency_ms, settings.model, dispatcher.policy)
    return text

def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Ask Study Buddy a question without the HTTP gateway")
    ap.add_argument("--question", required=True, help="Question text")
    ap.add_argument("--cfg", default=None, help="YAML config path")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)
    setup_logging(args.log_level)

    try:
        text = ask(args.question, args.cfg)
    except ConfigError as e:
        LOGGER.error("Configuration error: %s", e)
        return 2
    except GatewayError as e:
        LOGGER.error("Generation failed: %s", e)
        return 1
    print(text)
    return 0

if __name__ == "__main__":
    sys.exit(main())
