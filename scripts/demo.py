import asyncio, json, logging

from dotenv import load_dotenv

from txguard.models import TransactionRequest
from txguard.pipeline import GuardPipeline
from txguard.settings import Settings

load_dotenv()
settings = Settings.from_env()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s | %(message)s")
pipeline = GuardPipeline.from_settings(settings)

WALLET = "0x1111111111111111111111111111111111111111"
MAX_UINT = "f" * 64

samples = {
    "send 0.001 ETH to WETH": {
        "chainId": 1, "from": WALLET,
        "to": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "value": "1000000000000000", "data": "0x",
    },
    "unlimited approve to unknown contract": {
        "chainId": 1, "from": WALLET,
        "to": "0x9999999999999999999999999999999999999999",
        "value": "0",
        "data": "0x095ea7b3" + "00" * 12 + "22" * 20 + MAX_UINT,
    },
    "sentinel drainer": {
        "chainId": 1, "from": WALLET,
        "to": "0xdeadbeef00000000000000000000000000000000",
    },
}

for name, body in samples.items():
    verdict = asyncio.run(pipeline.analyze(TransactionRequest.model_validate(body)))
    print(f"== {name}")
    print(json.dumps(verdict.model_dump(mode="json", by_alias=True), indent=2))
