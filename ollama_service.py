"""Ollama vision client: identify sports cards from photos.

Talks to a locally hosted Ollama server over its HTTP API:

    GET  {host}/api/tags       connection check / installed models
    POST {host}/api/generate   single-shot image analysis (stream disabled)

The model is asked for a JSON object describing the card; its answer is
normalised into the field names and types the card store validates.
"""

import os
import re
import json
import math
import base64
import logging
import urllib.request
import urllib.error
from datetime import datetime

from collection_utils import CONDITION_GRADES, CONDITION_SCORES
from config import OLLAMA_HOST, OLLAMA_MODEL, OLLAMA_TIMEOUT, OLLAMA_CONNECT_TIMEOUT

logger = logging.getLogger(__name__)

IMAGE_FILE_RE = re.compile(r'\.(jpg|jpeg|png|gif|bmp)$', re.IGNORECASE)

CARD_PROMPT = """Analyze this trading card image and extract the following information in JSON format:
{
  "playerName": "player's full name",
  "sport": "sport type (Baseball, Basketball, Football, Hockey, etc.)",
  "year": "card year as number",
  "manufacturer": "card manufacturer/brand",
  "setName": "set or product name",
  "cardNumber": "card number",
  "isRookieCard": "true if rookie card, false otherwise",
  "isAutograph": "true if autographed, false otherwise",
  "isMemorabilia": "true if contains memorabilia/patch, false otherwise",
  "condition": {
    "centering": "rate 1-10",
    "corners": "rate 1-10",
    "edges": "rate 1-10",
    "surface": "rate 1-10",
    "overall": "Poor, Fair, Good, Very Good, Excellent, Near Mint, Mint, or Gem Mint"
  },
  "estimatedValue": "estimated value in dollars as number",
  "confidence": "confidence level 0-1"
}

Only return valid JSON, no other text."""

# Model output key → card field
_FIELD_MAP = {
    "playerName":     "player_name",
    "sport":          "sport",
    "year":           "year",
    "manufacturer":   "manufacturer",
    "setName":        "set_name",
    "cardNumber":     "card_number",
    "isRookieCard":   "is_rookie_card",
    "isAutograph":    "is_autograph",
    "isMemorabilia":  "is_memorabilia",
    "condition":      "condition",
    "estimatedValue": "estimated_value",
    "confidence":     "confidence",
}


class OllamaError(Exception):
    """Raised when the Ollama server cannot be reached or returns an error."""


def default_card_data():
    """Placeholder record used when the model's answer cannot be parsed."""
    return {
        "player_name":     "Unknown Player",
        "sport":           "Unknown",
        "year":            datetime.now().year,
        "manufacturer":    "Unknown",
        "set_name":        "Unknown Set",
        "card_number":     "1",
        "is_rookie_card":  False,
        "is_autograph":    False,
        "is_memorabilia":  False,
        "condition": {
            "centering": 5,
            "corners":   5,
            "edges":     5,
            "surface":   5,
            "overall":   "Good",
        },
        "estimated_value": 1.0,
        "confidence":      0.1,
    }


def extract_json(text):
    """Parse the JSON object spanning the first '{' to the last '}' in text.

    Raises:
        ValueError: if no object can be found or it is not valid JSON.
    """
    text = (text or "").strip()
    start = text.find("{")
    end = text.rfind("}") + 1
    if start != -1 and end > start:
        text = text[start:end]
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return data


def _to_bool(val):
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return val != 0
    return str(val).strip().lower() in ("true", "yes", "1")


def _to_float(val, default=0.0):
    if isinstance(val, (int, float)) and not isinstance(val, bool):
        try:
            val = float(val)
        except OverflowError:
            return default
        return val if math.isfinite(val) else default
    m = re.search(r'-?\d+(?:\.\d+)?', str(val or "").replace(",", ""))
    if not m:
        return default
    val = float(m.group())
    return val if math.isfinite(val) else default


def _to_score(val):
    score = int(round(_to_float(val, 5)))
    return min(10, max(1, score))


def normalise_card_data(raw):
    """Map a model answer onto card fields with coerced types.

    Unknown keys are dropped. Condition scores are clamped to 1..10, an
    unrecognised overall grade becomes 'Good', money values are floored at 0
    and confidence is clamped to 0..1.
    """
    fallback = default_card_data()
    data = {}
    for src, dst in _FIELD_MAP.items():
        if src in raw:
            data[dst] = raw[src]
        elif dst in raw:
            data[dst] = raw[dst]

    for key in ("player_name", "sport", "manufacturer", "set_name", "card_number"):
        val = str(data.get(key) or "").strip()
        data[key] = val or fallback[key]

    year = int(_to_float(data.get("year"), fallback["year"]))
    data["year"] = year

    for key in ("is_rookie_card", "is_autograph", "is_memorabilia"):
        data[key] = _to_bool(data.get(key, False))

    condition = data.get("condition") if isinstance(data.get("condition"), dict) else {}
    overall = str(condition.get("overall", "")).strip()
    grades = {g.lower(): g for g in CONDITION_GRADES}
    data["condition"] = {k: _to_score(condition.get(k, 5)) for k in CONDITION_SCORES}
    data["condition"]["overall"] = grades.get(overall.lower(), "Good")

    data["estimated_value"] = max(0.0, _to_float(data.get("estimated_value"), 0.0))
    data["confidence"] = min(1.0, max(0.0, _to_float(data.get("confidence"), 0.0)))
    return data


class OllamaService:
    def __init__(self, host=None, model=None, timeout=None):
        self.host = (host or OLLAMA_HOST).rstrip("/")
        self.model = model or OLLAMA_MODEL
        self.timeout = timeout or OLLAMA_TIMEOUT
        logger.info(f"[OLLAMA] Initialized with host: {self.host}, model: {self.model}")

    def _request(self, path, payload=None, timeout=None):
        url = f"{self.host}{path}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST" if data is not None else "GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=timeout or self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            body = e.read().decode(errors="replace")
            raise OllamaError(f"Ollama error {e.code} on {path}: {body}") from e
        except urllib.error.URLError as e:
            raise OllamaError(f"Could not reach Ollama at {self.host}: {e.reason}") from e
        except (TimeoutError, json.JSONDecodeError) as e:
            raise OllamaError(f"Bad response from Ollama on {path}: {e}") from e

    def test_connection(self):
        """Return True if the Ollama server answers /api/tags."""
        try:
            data = self._request("/api/tags", timeout=OLLAMA_CONNECT_TIMEOUT)
        except OllamaError as e:
            logger.error(f"[OLLAMA] Connection failed: {e}")
            return False
        models = [m.get("name") for m in data.get("models", [])]
        logger.info(f"[OLLAMA] Connection successful, available models: {models}")
        return True

    def analyze_card_image(self, image_path):
        """Ask the vision model to identify the card in one image file.

        Returns normalised card data including a 'confidence' key. A model
        answer that is not valid JSON yields default_card_data().

        Raises:
            OSError: if the image cannot be read.
            OllamaError: if the request to Ollama fails.
        """
        logger.info(f"[OLLAMA] Analyzing card image: {image_path}")
        with open(image_path, "rb") as f:
            image_b64 = base64.b64encode(f.read()).decode("utf-8")

        result = self._request("/api/generate", {
            "model":   self.model,
            "prompt":  CARD_PROMPT,
            "images":  [image_b64],
            "stream":  False,
            "options": {"temperature": 0.1, "top_p": 0.9},
        })
        response_text = result.get("response", "")
        logger.debug(f"[OLLAMA] Raw response for {image_path}: {response_text}")

        try:
            return normalise_card_data(extract_json(response_text))
        except ValueError as e:
            logger.warning(f"[OLLAMA] Failed to parse JSON response for {image_path}: {e}")
            return default_card_data()

    def list_images(self, folder_path):
        if not os.path.isdir(folder_path):
            raise FileNotFoundError(f"Folder not found: {folder_path}")
        images = sorted(f for f in os.listdir(folder_path) if IMAGE_FILE_RE.search(f))
        if not images:
            raise ValueError("No image files found in the specified folder")
        return images

    def process_card_folder(self, folder_path, progress_callback=None, should_continue=None):
        """Analyse every image in a folder, one at a time.

        Args:
            folder_path: Directory holding card photos.
            progress_callback: Called as progress_callback(processed, total)
                after each image, successful or not.
            should_continue: Optional callable checked before each image; the
                loop stops early when it returns False.

        Returns:
            List of result dicts: {'success': True, 'image_file', 'card_data'}
            or {'success': False, 'image_file', 'error'}.

        Raises:
            FileNotFoundError: if folder_path does not exist.
            ValueError: if the folder holds no supported images.
        """
        images = self.list_images(folder_path)
        total = len(images)
        logger.info(f"[OLLAMA] Found {total} image files in {folder_path}")

        lot_number = os.path.basename(os.path.normpath(folder_path))
        results = []
        for processed, image_file in enumerate(images, start=1):
            if should_continue is not None and not should_continue():
                logger.info(f"[OLLAMA] Stopping {folder_path} after {processed - 1}/{total} images")
                break
            image_path = os.path.join(folder_path, image_file)
            logger.info(f"[OLLAMA] Processing image {processed}/{total}: {image_file}")
            try:
                card_data = self.analyze_card_image(image_path)
                card_data["front_image"] = image_path
                card_data["back_image"] = image_path
                card_data["lot_number"] = lot_number
                results.append({"success": True, "image_file": image_file, "card_data": card_data})
            except (OSError, OllamaError) as e:
                logger.error(f"[OLLAMA] Failed to process {image_file}: {e}")
                results.append({"success": False, "image_file": image_file, "error": str(e)})
            except Exception as e:
                # One bad image never stops the folder
                logger.exception(f"[OLLAMA] Unexpected error processing {image_file}")
                results.append({"success": False, "image_file": image_file, "error": str(e)})
            if progress_callback:
                progress_callback(processed, total)

        ok = sum(1 for r in results if r["success"])
        logger.info(f"[OLLAMA] Completed processing {folder_path}. Success: {ok}, Failed: {len(results) - ok}")
        return results
