"""
Loading of OpenAPI / Swagger documents from YAML or JSON sources.
"""

from pathlib import Path
from typing import Any, Dict

import requests
import yaml
from loguru import logger

from .errors import SpecLoadError


def parse_spec_text(text: str, source: str = "<string>") -> Dict[str, Any]:
    """Parse document text. JSON is a subset of YAML, so one parser covers both."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Could not parse {source}: {e}") from e

    if not isinstance(data, dict):
        raise SpecLoadError(f"Expected a mapping at the top of {source}")
    if "openapi" not in data and "swagger" not in data:
        logger.warning(f"{source} declares neither 'openapi' nor 'swagger'; compiling anyway")
    return data


def load_spec(source: str, timeout: float = 30.0) -> Dict[str, Any]:
    """
    Load a specification document from a file path or an http(s) URL.

    Args:
        source: Local path or URL of a YAML/JSON document
        timeout: Download timeout in seconds for URLs

    Returns:
        The parsed document
    """
    if source.startswith(("http://", "https://")):
        logger.info(f"Downloading specification from {source}")
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SpecLoadError(f"Could not download {source}: {e}") from e
        return parse_spec_text(response.text, source)

    path = Path(source)
    if not path.exists():
        raise SpecLoadError(f"Specification file not found: {source}")

    logger.info(f"Loading specification from {source}")
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return parse_spec_text(text, source)
