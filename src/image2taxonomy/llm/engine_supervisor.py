"""
engine_supervisor.py

Owns the local llama-server process for one worker:
    1. Load the compiled taxonomy grammar
    2. Launch llama-server with the vision model (+ projector when present)
    3. Poll /health until the model is loaded (bounded)
    4. Serve grammar-constrained classification requests
    5. Stop the process on shutdown
"""

import os
import subprocess
from typing import List, Optional

import requests
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from image2taxonomy.components.image_preprocessor import prepare_image
from image2taxonomy.exception import ConfigurationError, EngineStartupError, InferenceError
from image2taxonomy.llm.openai_client import OpenAIClient
from image2taxonomy.logger import get_logger
from image2taxonomy.models import EngineSettings

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a product analysis assistant for fashion images.
You must:
- Identify the single main product being sold in the image (the primary focus).
- Classify it using the provided apparel taxonomy.
- Always select the MOST SPECIFIC leaf category that applies (never stop at a broad node like "Apparel & Accessories").

Guidance for the main visible product:
- Clothing worn on the upper body goes under "Clothing > Clothing Tops".
- A full suit or tuxedo: use a "Suits > Tuxedos" style path.
- A jacket or blazer: use the matching "Outerwear" / "Coats & Jackets" path.
- Do NOT use Skirt Suits or Pant Suits unless the product is a feminine skirt suit or pant suit. If it is not a tuxedo, use "Clothing > Suits".
- Prefer general categories over gendered variants unless the image clearly indicates one.
- Footwear: only use "Shoes" branches (e.g. Boots, Sneakers) when the product is clearly footwear.
- Costumes: only use "Costumes" branches when the product is clearly a costume.
- Handbags, wallets, backpacks, cases: only use "Handbags, Wallets & Cases" when the product clearly is one, and pay attention to the bag type (crossbody, shoulder, tote, backpack, ...).
- Lanyards, keychains, wallet chains: only use "Handbag & Wallet Accessories" when the product clearly is one.
- Belts, hats, wristbands and other wearables that are not regular clothing or bags: use "Clothing Accessories" branches.
- Jewelry (chains, bracelets, earrings, rings, ...): only use "Jewelry" branches when the product is clearly jewelry.
- Jewelry worn on the body (chain belts, nose rings, belly rings, toe rings, ...): use "Jewelry > Body Jewelry".
- Watches: use "Jewelry > Watches". Smartwatches: use "Jewelry > Smartwatches".
- Shoe-related items that are not shoes (covers, grips, gel pads, laces, ...): use "Shoe Accessories".
- Bras, bodysuits, jockstraps and other lingerie: use "Lingerie" branches.

The taxonomy string MUST be a valid path starting with "Apparel & Accessories" and using only exact names from the taxonomy."""

USER_PROMPT = """Analyze the product in this image and provide a JSON response.

1. TITLE: A specific, descriptive product name for the main item being sold.
2. DESCRIPTION: Describe the real visual details - colors, materials, design features, branding, style, and what garment or footwear it is.
3. TAXONOMY: Map the main product to the most specific valid category path from the apparel taxonomy.

Rules for TAXONOMY:
- Always start with: "Apparel & Accessories > ..."
- Only use category names that exist in the taxonomy.
- Always go to the most specific leaf possible.
- Do NOT output just "Apparel & Accessories".

Respond with JSON only (no other text)."""

HEALTH_REQUEST_TIMEOUT = 5
STOP_GRACE_SECONDS = 10

# backend -> --device value; cpu gets no GPU flags at all
_DEVICES = {"metal": "metal", "gpu": "cuda", "arm": "arm"}


def acceleration_args(backend: str, gpu_layers: int) -> List[str]:
    """
    llama-server flags for an acceleration backend. Unknown backends run on CPU.
    """
    device = _DEVICES.get(backend)
    if device is None:
        if backend != "cpu":
            logger.info(f"Unknown acceleration backend '{backend}', falling back to CPU mode")
        return []
    logger.info(f"Using {backend} acceleration with {gpu_layers} GPU layers")
    return ["-ngl", str(gpu_layers), "--device", device]


def projector_path(model_path: str) -> str:
    """Multimodal projector expected next to the weights: mmproj-<model file>."""
    return os.path.join(os.path.dirname(model_path), "mmproj-" + os.path.basename(model_path))


class LlamaServerSupervisor:
    """
    One llama-server process per worker, driven through its
    OpenAI-compatible API.

    Usage:
        with LlamaServerSupervisor(settings) as engine:
            text = engine.classify("/uploads/42.jpg")
    """

    def __init__(self, settings: EngineSettings, client: Optional[OpenAIClient] = None, sleep=None):
        self.settings = settings
        self.client = client
        self.process: Optional[subprocess.Popen] = None
        self.grammar: Optional[str] = None
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return self.settings.base_url

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------
    def __enter__(self) -> "LlamaServerSupervisor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def start(self):
        """Launch llama-server and block until it reports healthy."""
        self.grammar = self._load_grammar()
        args = self._build_command()

        env = dict(os.environ)
        env["DYLD_LIBRARY_PATH"] = os.path.dirname(self.settings.server_path)

        logger.info("Starting llama server...")
        logger.debug(f"llama-server command: {' '.join(args)}")
        try:
            self.process = subprocess.Popen(args, env=env)
        except OSError as e:
            raise EngineStartupError(f"failed to start llama server: {e}")

        # __exit__ never runs when __enter__ raises, so startup owns the cleanup
        try:
            self._wait_until_ready()
        except BaseException:
            self._kill()
            raise

        if self.client is None:
            self.client = OpenAIClient(
                base_url=self.base_url,
                model=self.settings.model_alias,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                timeout=self.settings.request_timeout,
            )
        logger.info(f"llama-server running at {self.base_url} (pid={self.process.pid})")

    def stop(self):
        """Terminate the process. Safe to call more than once."""
        process, self.process = self.process, None
        if process is None or process.poll() is not None:
            return

        logger.info("Stopping llama server...")
        process.terminate()
        try:
            process.wait(timeout=STOP_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("llama-server did not exit after SIGTERM, killing it")
            process.kill()
            process.wait()

    def _kill(self):
        process, self.process = self.process, None
        if process is not None and process.poll() is None:
            process.kill()
            process.wait()

    # ------------------------------------------------------------------
    # STARTUP HELPERS
    # ------------------------------------------------------------------
    def _load_grammar(self) -> str:
        try:
            with open(self.settings.grammar_path, "r", encoding="utf-8") as f:
                grammar = f.read()
        except OSError as e:
            raise ConfigurationError(f"failed to read grammar: {e}")
        logger.info(f"Loaded taxonomy grammar from {self.settings.grammar_path} ({len(grammar)} bytes)")
        return grammar

    def _build_command(self) -> List[str]:
        s = self.settings
        if not os.path.isfile(s.model_path):
            raise ConfigurationError(f"model weights not found at {s.model_path}")

        args = [
            s.server_path,
            "-m", s.model_path,
            "--host", s.host,
            "--port", str(s.port),
            "-c", str(s.context_size),
        ]
        args += acceleration_args(s.acceleration, s.gpu_layers)

        mmproj = projector_path(s.model_path)
        if os.path.isfile(mmproj):
            logger.info(f"Found multimodal projector: {mmproj}")
            args += ["--mmproj", mmproj]
        else:
            logger.warning(f"No mmproj file found at {mmproj}; vision capabilities may not work without it")

        return args

    def _check_health(self) -> bool:
        if self.process is not None and self.process.poll() is not None:
            raise EngineStartupError(f"llama-server exited with code {self.process.returncode} during startup")

        try:
            response = requests.get(f"{self.base_url}/health", timeout=HEALTH_REQUEST_TIMEOUT)
        except requests.RequestException:
            return False

        if response.status_code == 200:
            logger.info("llama-server is ready!")
            return True
        if response.status_code == 503:
            logger.info("llama-server is loading model...")
        return False

    def _wait_until_ready(self):
        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        retryer = Retrying(
            stop=stop_after_delay(self.settings.startup_timeout),
            wait=wait_fixed(self.settings.health_interval),
            retry=retry_if_result(lambda ready: not ready),
            **retry_kwargs,
        )
        try:
            retryer(self._check_health)
        except RetryError:
            raise EngineStartupError(
                f"llama-server failed to start after {self.settings.startup_timeout:g} seconds"
            )

    # ------------------------------------------------------------------
    # CLASSIFICATION
    # ------------------------------------------------------------------
    def classify(self, image_path: str) -> str:
        """
        Run one grammar-constrained classification and return the raw text.

        Raises InferenceError (including ImagePreprocessError) on any
        per-image failure.
        """
        if self.client is None or self.grammar is None:
            raise InferenceError("inference engine is not running")

        image = prepare_image(
            image_path,
            target_size=self.settings.image_target_size,
            jpeg_quality=self.settings.jpeg_quality,
        )

        response = self.client.chat_with_image(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=USER_PROMPT,
            image_data_url=image.to_data_url(),
            grammar=self.grammar,
        )
        return response.content
