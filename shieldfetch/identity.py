import random
from typing import Dict, Optional

from .config import config
from .models import Platform

USER_AGENTS = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
)

REFERERS = {
    Platform.AMAZON: 'https://www.amazon.com/',
    Platform.WALMART: 'https://www.walmart.com/',
}


def random_user_agent(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(USER_AGENTS)


def browser_headers(user_agent: str, platform: Platform, rng: Optional[random.Random] = None) -> Dict[str, str]:
    """Browser-shaped request headers for one attempt.

    About 30% of attempts also carry X-Requested-With so that consecutive
    requests do not share one exact header set.
    """
    rng = rng or random
    headers = {
        'User-Agent': user_agent,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
        'Accept-Encoding': 'gzip, deflate',
        'Cache-Control': 'max-age=0',
        'DNT': '1',
        'Connection': 'keep-alive',
        'Upgrade-Insecure-Requests': '1',
        'Referer': REFERERS[platform],
    }
    if rng.random() < config.get('identity', 'extra_header_probability', default=0.3):
        headers['X-Requested-With'] = 'XMLHttpRequest'
    return headers
