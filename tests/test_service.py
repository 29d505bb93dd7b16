import pytest
from lxml import etree

from helpers import run
from sitemapper.coordinator import CrawlCoordinator
from sitemapper.errors import CrawlNotFoundError, EmptySitemapError, InvalidRequestError
from sitemapper.service import SitemapService
from sitemapper.sitemap import SITEMAP_NS
from sitemapper.store import MemoryStateStore

NS = {"sm": SITEMAP_NS}


@pytest.fixture
def service(small_site):
    return SitemapService(CrawlCoordinator(MemoryStateStore(), small_site.processor()))


def locs(xml):
    root = etree.fromstring(xml.encode("utf-8"))
    return [el.text for el in root.findall("sm:url/sm:loc", NS)]


@pytest.mark.parametrize(
    "url, message",
    [
        (None, "URL is required"),
        ("   ", "URL is required"),
        ("example.com", "URL must start with http:// or https://"),
        ("ftp://example.com", "URL must start with http:// or https://"),
        ("https://", "Invalid URL format"),
    ],
)
def test_start_crawl_validates_url(service, url, message):
    with pytest.raises(InvalidRequestError) as exc_info:
        service.start_crawl(url)
    assert exc_info.value.message == message
    assert exc_info.value.status == 400


def test_start_crawl_rejects_bad_options(service):
    with pytest.raises(InvalidRequestError):
        service.start_crawl("https://example.com", {"changeFrequency": "sometimes"})
    with pytest.raises(InvalidRequestError):
        service.start_crawl("https://example.com", {"maxDepth": "deep"})


def test_start_crawl_applies_options(service):
    crawl_id = service.start_crawl("https://example.com", {"maxDepth": 1, "crawlRate": 250})
    config = service.coordinator.load(crawl_id).config
    assert config.max_depth == 1
    assert config.crawl_rate == 0.25
    progress = service.get_progress(crawl_id)
    assert progress["isComplete"] is False
    assert progress["progress"]["totalUrls"] == 1


def test_process_batch_requires_fields(service):
    with pytest.raises(InvalidRequestError, match="URLs array is required"):
        run(service.process_batch({"baseUrl": "https://example.com"}))
    with pytest.raises(InvalidRequestError, match="URLs array is required"):
        run(service.process_batch({"urls": [], "baseUrl": "https://example.com"}))
    with pytest.raises(InvalidRequestError, match="Base URL is required"):
        run(service.process_batch({"urls": ["https://example.com/"]}))


def test_process_batch(service):
    payload = {
        "urls": ["https://example.com/"],
        "baseUrl": "https://example.com",
        "options": {"maxDepth": 2, "retryCount": 0},
        "depths": {"https://example.com/": 0},
    }
    response = run(service.process_batch(payload))
    results = response["results"]
    assert [p["url"] for p in results["processedUrls"]] == ["https://example.com/"]
    assert results["newUrls"] == ["https://example.com/a/", "https://example.com/b/"]
    assert results["linkDepths"] == {"https://example.com/a/": 1, "https://example.com/b/": 1}


def test_generate_from_plain_urls(service):
    xml, content_type = service.generate_sitemap(
        ["https://example.com/b", "https://example.com/a?utm=1", "https://example.com/a"]
    )
    assert content_type == "application/xml"
    assert locs(xml) == ["https://example.com/b/", "https://example.com/a/"]


def test_generate_from_records_with_hostname(service):
    xml, _ = service.generate_sitemap(
        [{"url": "/about", "lastmod": "2024-05-01T00:00:00Z", "priority": 0.3}],
        {"hostname": "https://example.com", "pretty": False},
    )
    assert locs(xml) == ["https://example.com/about/"]
    assert "<lastmod>2024-05-01T00:00:00+00:00</lastmod>" in xml
    assert "<priority>0.3</priority>" in xml


def test_generate_requires_urls(service):
    with pytest.raises(EmptySitemapError) as exc_info:
        service.generate_sitemap([])
    assert exc_info.value.message == "No URLs provided. Cannot generate sitemap."


def test_generate_requires_hostname_for_relative_urls(service):
    with pytest.raises(InvalidRequestError, match="hostname"):
        service.generate_sitemap(["/about"])


def test_crawl_lifecycle(service):
    crawl_id = service.start_crawl("https://example.com")
    run(service.coordinator.run(crawl_id))

    progress = service.get_progress(crawl_id)
    assert progress["isComplete"] is True
    assert progress["isCancelled"] is False
    assert progress["result"]["startUrl"] == "https://example.com/"
    assert progress["result"]["crawlTime"] >= 1
    assert len(progress["result"]["urls"]) == 6

    xml, _ = service.generate_sitemap(crawl_id=crawl_id)
    assert len(locs(xml)) == 6
    assert locs(xml)[0] == "https://example.com/"


def test_cancel(service):
    crawl_id = service.start_crawl("https://example.com")
    assert service.cancel(crawl_id) == {"success": True, "message": "Crawling canceled"}
    progress = service.get_progress(crawl_id)
    assert progress["isComplete"] is True
    assert progress["isCancelled"] is True


def test_unknown_crawl(service):
    with pytest.raises(CrawlNotFoundError) as exc_info:
        service.get_progress("missing")
    assert exc_info.value.status == 404


@pytest.mark.parametrize("item", [42, None, {"url": "https://example.com/", "priority": "high"}])
def test_generate_rejects_malformed_entries(service, item):
    with pytest.raises(InvalidRequestError) as exc_info:
        service.generate_sitemap(["https://example.com/", item])
    assert exc_info.value.status == 400
