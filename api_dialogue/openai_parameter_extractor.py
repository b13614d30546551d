"""
OpenAI-based parameter extractor for free-form utterances.
"""

import json
import os
import re
import time
from typing import Any, Dict, Optional
from loguru import logger
from openai import OpenAI

from .models import ToolDescriptor
from .parameter_extractor import ParameterExtractor, PatternParameterExtractor, is_placeholder


class OpenAIParameterExtractor(ParameterExtractor):
    """Asks a chat model for a JSON object of parameter values.

    Any failure of the API call falls back to the pattern extractor, so a
    turn never fails because the model is unreachable.
    """

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 client: Optional[OpenAI] = None,
                 fallback: Optional[ParameterExtractor] = None):
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            client = OpenAI(api_key=api_key)

        self.client = client
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
        self.fallback = fallback or PatternParameterExtractor()
        self.last_token_usage: Dict[str, Any] = {}
        self.last_timing: Dict[str, float] = {}
        logger.info(f"Initialized OpenAI parameter extractor with model: {self.model}")

    def extract(self, utterance: str, tool: ToolDescriptor) -> Dict[str, Any]:
        if not utterance or not len(tool.input_schema):
            return {}
        try:
            prompt = self._build_extraction_prompt(utterance, tool)
            start_time = time.time()

            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "Extract API call parameters as JSON."},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
                max_tokens=300,
            )

            self.last_timing = {
                "parameter_extraction_time": time.time() - start_time,
                "timestamp": time.time(),
            }
            if getattr(response, "usage", None):
                self.last_token_usage = {
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                    "operation": "parameter_extraction",
                }

            content = (response.choices[0].message.content or "").strip()
            logger.debug(f"OpenAI response: {content}")
            parameters = self._clean_extracted_parameters(self._parse_openai_response(content), tool)
            logger.info(f"Extracted parameters using OpenAI: {parameters}")
            return parameters

        except Exception as e:
            logger.error(f"OpenAI parameter extraction failed: {e}")
            return self.fallback.extract(utterance, tool)

    def _build_extraction_prompt(self, utterance: str, tool: ToolDescriptor) -> str:
        lines = []
        for field in tool.input_schema:
            hint = f"- {field.name} ({field.type}, {'required' if field.required else 'optional'})"
            if field.description:
                hint += f": {field.description}"
            if field.enum:
                hint += f" One of: {', '.join(str(value) for value in field.enum)}"
            lines.append(hint)

        return f"""Operation: {tool.name} - {tool.description}
Request: "{utterance}"

Parameters:
{chr(10).join(lines)}

Only include parameters whose values are stated in the request. Never invent values.
Return JSON only:"""

    def _parse_openai_response(self, content: str) -> Dict[str, Any]:
        try:
            json_match = re.search(r"\{.*\}", content, re.DOTALL)
            data = json.loads(json_match.group(0) if json_match else content)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse OpenAI response as JSON: {content}")
            return {}
        return data if isinstance(data, dict) else {}

    def _clean_extracted_parameters(self, values: Dict[str, Any], tool: ToolDescriptor) -> Dict[str, Any]:
        cleaned = {}
        for key, value in values.items():
            declared = tool.input_schema.lookup(str(key))
            if declared is None or is_placeholder(value):
                continue
            cleaned[declared] = value.strip() if isinstance(value, str) else value
        return cleaned
