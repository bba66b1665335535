import httpx
import pytest

from shieldfetch.pool import ConnectionPool

AMAZON_PRODUCT_PAGE = """
<html>
  <head><title>Amazon.com: Echo Dot (5th Gen)</title></head>
  <body>
    <div id="dp">
      <span id="productTitle">
        Echo Dot (5th Gen, 2022 release) |   Smart speaker with Alexa
      </span>
      <div id="corePrice"><span class="a-price">$49.99</span></div>
      <div id="availability">In Stock</div>
      <p>Our best sounding Echo Dot yet. Enjoy an improved audio experience with clearer vocals
         and deeper bass for an immersive sound in any room.</p>
      <input type="submit" value="Add to Cart">
    </div>
  </body>
</html>
"""

WALMART_PRODUCT_PAGE = """
<html>
  <body>
    <section>
      <h1 itemprop="name" data-automation-id="product-title">Nintendo Switch
          with Neon Blue and Neon Red Joy-Con</h1>
      <span itemprop="price">$299.00</span>
      <p>Play at home or on the go with one system. Add to cart today and get free
         shipping on this item when it is in stock at your local store.</p>
    </section>
  </body>
</html>
"""

FIREWALL_PAGE = (
    "<html><body><h1>Access Denied</h1>"
    "<p>Request blocked by firewall security rule.</p></body></html>"
)


@pytest.fixture
def amazon_page():
    return AMAZON_PRODUCT_PAGE


@pytest.fixture
def walmart_page():
    return WALMART_PRODUCT_PAGE


@pytest.fixture
def firewall_page():
    return FIREWALL_PAGE


@pytest.fixture
def mock_pool():
    """Build a ConnectionPool whose transport is the given handler; shut down after the test."""
    pools = []

    def factory(handler, **kwargs):
        pool = ConnectionPool(transport=httpx.MockTransport(handler), **kwargs)
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        pool.shutdown()
