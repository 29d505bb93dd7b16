from datetime import datetime, timedelta, timezone

from sitemapper.extract import has_noindex, parse_html, parse_page, resolve_last_modified

PAGE = "https://example.com/blog/post/"


def test_links_resolved_against_page_url():
    content = parse_page(
        """
        <a href="/about">About</a>
        <a href="next/">Next</a>
        <a href="https://example.com/contact#form">Contact</a>
        <a href="mailto:me@example.com">Mail</a>
        <a href="javascript:void(0)">JS</a>
        <a href="tel:+123">Call</a>
        <a href="">Empty</a>
        <a href="/about">Duplicate</a>
        <a href="http://[broken">Broken</a>
        <a>No href</a>
        """,
        PAGE,
    )
    assert content.links == [
        "https://example.com/about",
        "https://example.com/blog/post/next/",
        "https://example.com/contact#form",
    ]


def test_images_disabled_by_default():
    content = parse_page('<img src="/a.png">', PAGE)
    assert content.images == []


def test_images_resolved_deduplicated_and_data_uris_dropped():
    content = parse_page(
        """
        <img src="/img/a.png"><img src="b.jpg"><img src="/img/a.png">
        <img src="data:image/png;base64,iVBORw0KGgo=">
        <img alt="no source">
        """,
        PAGE,
        include_images=True,
    )
    assert content.images == ["https://example.com/img/a.png", "https://example.com/blog/post/b.jpg"]


def test_noindex_detection():
    assert has_noindex(parse_html('<meta name="robots" content="NOINDEX, follow">'))
    assert has_noindex(parse_html('<meta name="googlebot" content="noindex">'))
    assert has_noindex(parse_html('<meta name="Robots" content="noindex">'))
    assert not has_noindex(parse_html('<meta name="robots" content="index, follow">'))
    assert not has_noindex(parse_html("<p>plain</p>"))


def test_lastmod_prefers_meta_tags():
    soup = parse_html(
        '<meta property="og:updated_time" content="2023-01-01T00:00:00Z">'
        '<meta property="article:modified_time" content="2024-02-03T04:05:06+02:00">'
    )
    lastmod = resolve_last_modified(soup, {"Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT"})
    assert lastmod == datetime(2024, 2, 3, 2, 5, 6, tzinfo=timezone.utc)


def test_lastmod_skips_unparseable_meta():
    soup = parse_html('<meta property="article:modified_time" content="last tuesday">')
    lastmod = resolve_last_modified(soup, {"last-modified": "Wed, 21 Oct 2015 07:28:00 GMT"})
    assert lastmod == datetime(2015, 10, 21, 7, 28, tzinfo=timezone.utc)


def test_lastmod_falls_back_to_now():
    lastmod = resolve_last_modified(parse_html("<p>x</p>"), {})
    assert lastmod.tzinfo is not None
    assert datetime.now(timezone.utc) - lastmod < timedelta(minutes=1)


def test_parse_page_reports_everything():
    content = parse_page(
        '<meta name="robots" content="noindex"><meta name="last-modified" content="2022-05-06">'
        '<a href="/x">x</a>',
        PAGE,
    )
    assert content.noindex
    assert content.links == ["https://example.com/x"]
    assert content.last_modified == datetime(2022, 5, 6, tzinfo=timezone.utc)
