from hopchain.providers.payload import locate

PAGE = "https://player.test/prorcp/abc"
MD5_JS = "/sV05kUlNvOdOxvtC/2a8c4e1f9b3d5a7c6e0f1a2b3c4d5e6f.js"


def test_inline_decoder_naming_identifier():
    body = """
    <div id="xTyBxQyGTA" style="display:none;">cGxheWxpc3Q=</div>
    <script>var unrelated = 1;</script>
    <script>window["xTyBxQyGTA"] = atob(document.getElementById("xTyBxQyGTA").innerHTML);</script>
    """
    bundle = locate(body, page_url=PAGE)
    assert bundle.identifier == "xTyBxQyGTA"
    assert bundle.payload == "cGxheWxpc3Q="
    assert bundle.decoder.is_inline
    assert "getElementById" in bundle.decoder.inline
    assert bundle.page_url == PAGE


def test_external_md5_decoder_preferred_over_libraries():
    body = f"""
    <div id="abc" hidden>{"A" * 40}</div>
    <script src="https://cdn.jsdelivr.net/npm/jquery.min.js"></script>
    <script src="/js/playerjs.js"></script>
    <script src="/assets/app.js"></script>
    <script src="{MD5_JS}"></script>
    """
    bundle = locate(body, page_url=PAGE)
    assert not bundle.decoder.is_inline
    assert bundle.decoder.url == "https://player.test" + MD5_JS


def test_visible_or_short_containers_are_ignored():
    body = f"""
    <div id="label" style="display:none">short</div>
    <div id="shown">{"B" * 40}</div>
    <script>window["shown"] = 1;</script>
    """
    assert locate(body, page_url=PAGE) is None


def test_min_length_is_respected():
    body = """
    <div id="p1" style="visibility: hidden">0123456789</div>
    <script>window["p1"] = document.getElementById("p1").textContent;</script>
    """
    assert locate(body, min_length=8) is not None
    assert locate(body, min_length=500) is None


def test_container_without_decoder():
    body = f'<div id="abc" style="display:none">{"C" * 40}</div><script src="https://other.test/x.js"></script>'
    assert locate(body, page_url=PAGE) is None


def test_empty_body():
    assert locate("") is None
