import random

from shieldfetch.identity import REFERERS, USER_AGENTS, browser_headers, random_user_agent
from shieldfetch.models import Platform


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_random_user_agent_comes_from_the_list():
    rng = random.Random(1)

    assert {random_user_agent(rng) for _ in range(50)} <= set(USER_AGENTS)


def test_browser_headers_carry_user_agent_and_referer():
    headers = browser_headers(USER_AGENTS[0], Platform.WALMART, FixedRandom(0.9))

    assert headers["User-Agent"] == USER_AGENTS[0]
    assert headers["Referer"] == REFERERS[Platform.WALMART]
    assert headers["Accept-Language"].startswith("en-US")
    assert "X-Requested-With" not in headers


def test_extra_header_added_on_some_attempts():
    headers = browser_headers(USER_AGENTS[1], Platform.AMAZON, FixedRandom(0.1))

    assert headers["X-Requested-With"] == "XMLHttpRequest"
    assert headers["Referer"] == "https://www.amazon.com/"
