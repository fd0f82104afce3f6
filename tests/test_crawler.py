import threading
from unittest.mock import MagicMock, patch

import pytest

from PIL import Image

from conftest import CountingPipeline, SiteFetcher, img, link, make_image_bytes, page
from image_crawler.config import CrawlConfig
from image_crawler.crawler import (
    ImageCrawler,
    ThreadedImageCrawler,
    build_crawler,
    run_crawler,
)
from image_crawler.dedup import UriSet
from image_crawler.pages import HttpPageFetcher, Page


SEED = "http://example.com/"


def test_depth_beyond_limit_returns_zero_without_fetching():
    fetcher = MagicMock()
    crawler = ImageCrawler(fetcher, CountingPipeline(), max_depth=0)

    assert crawler.crawl(SEED, 1) == 0
    fetcher.fetch_page.assert_not_called()
    assert SEED not in crawler.uris


def test_depth_check_happens_before_claim():
    uris = MagicMock()
    crawler = ImageCrawler(MagicMock(), CountingPipeline(), max_depth=1, uris=uris)

    assert crawler.crawl(SEED, 2) == 0
    uris.try_claim.assert_not_called()


def test_runs_for_all_valid_depths():
    fetcher = SiteFetcher({})
    uris = MagicMock()
    uris.try_claim.return_value = True
    crawler = ImageCrawler(fetcher, CountingPipeline(), max_depth=3, uris=uris)

    for depth in range(1, 4):
        crawler.crawl(SEED, depth)

    assert uris.try_claim.call_count == 3
    assert len(fetcher.fetched) == 3


def test_previously_claimed_uri_is_skipped():
    fetcher = SiteFetcher({SEED: [img("http://example.com/a.png")]})
    uris = UriSet([SEED])
    crawler = ImageCrawler(fetcher, CountingPipeline(), max_depth=3, uris=uris)

    assert crawler.crawl(SEED, 1) == 0
    assert crawler.crawl(SEED, 3) == 0
    assert fetcher.fetched == []


def test_failed_fetch_contributes_zero():
    fetcher = SiteFetcher({})
    pipeline = CountingPipeline()
    crawler = ImageCrawler(fetcher, pipeline, max_depth=2)

    assert crawler.crawl(SEED) == 0
    assert fetcher.fetched == [SEED]
    assert pipeline.processed == []
    assert crawler.stats.pages_failed == 1


def test_empty_page_still_consumes_claim():
    fetcher = SiteFetcher({SEED: []})
    crawler = ImageCrawler(fetcher, CountingPipeline(), max_depth=2)

    assert crawler.crawl(SEED) == 0
    assert SEED in crawler.uris
    assert crawler.crawl(SEED) == 0
    assert fetcher.fetched == [SEED]


def test_mixed_page_with_failing_subpage():
    i1, i2 = "http://example.com/i1.png", "http://example.com/i2.png"
    fetcher = SiteFetcher({SEED: [link("http://example.com/p1"), img(i1), img(i2)]})
    pipeline = CountingPipeline({i1: 3, i2: 2})
    crawler = ImageCrawler(fetcher, pipeline, max_depth=2)

    assert crawler.crawl(SEED) == 5
    assert fetcher.fetched == [SEED, "http://example.com/p1"]
    assert pipeline.processed == [i1, i2]


def test_total_is_sum_of_subpages_and_images():
    site = {
        SEED: [link("http://example.com/a"), img("http://example.com/x.png"), link("http://example.com/b")],
        "http://example.com/a": [img("http://example.com/a1.png"), img("http://example.com/a2.png")],
        "http://example.com/b": [img("http://example.com/b1.png")],
    }
    pipeline = CountingPipeline(default=2)
    crawler = ImageCrawler(SiteFetcher(site), pipeline, max_depth=2)

    sub_a = ImageCrawler(SiteFetcher(site), pipeline, max_depth=1).crawl("http://example.com/a")
    sub_b = ImageCrawler(SiteFetcher(site), pipeline, max_depth=1).crawl("http://example.com/b")

    assert crawler.crawl(SEED) == sub_a + sub_b + 2
    assert crawler.stats.pages_fetched == 3
    assert crawler.stats.images_found == 4


def test_child_recursion_checks_depth_inside_call():
    fetcher = SiteFetcher({SEED: [link("http://example.com/child")]})
    crawler = ImageCrawler(fetcher, CountingPipeline(), max_depth=1)

    with patch.object(crawler, "crawl", wraps=crawler.crawl) as spy:
        assert crawler.crawl(SEED, 1) == 0

    spy.assert_any_call("http://example.com/child", 2)
    assert fetcher.fetched == [SEED]


def test_process_page_dispatches_each_element_once():
    crawler = ImageCrawler(MagicMock(), CountingPipeline(), max_depth=5)
    crawler.crawl = MagicMock(return_value=7)
    crawler.pipeline = MagicMock()
    crawler.pipeline.process_image.return_value = 11

    fake = page(img("http://example.com/i.png"), link("http://example.com/p"))

    assert crawler.process_page(fake, 4) == 18
    crawler.crawl.assert_called_once_with("http://example.com/p", 5)
    crawler.pipeline.process_image.assert_called_once_with("http://example.com/i.png")


def test_duplicate_images_on_a_page_are_each_processed():
    image = "http://example.com/same.png"
    pipeline = CountingPipeline(default=1)
    crawler = ImageCrawler(SiteFetcher({SEED: [img(image), img(image)]}), pipeline, max_depth=1)

    assert crawler.crawl(SEED) == 2
    assert pipeline.processed == [image, image]


def test_cycles_are_visited_once():
    site = {
        SEED: [link("http://example.com/a"), img("http://example.com/s.png")],
        "http://example.com/a": [link(SEED), link("http://example.com/a#top")],
    }
    fetcher = SiteFetcher(site)
    crawler = ImageCrawler(fetcher, CountingPipeline(default=1), max_depth=10)

    assert crawler.crawl(SEED) == 1
    assert fetcher.fetched == [SEED, "http://example.com/a"]


def test_concurrent_claims_let_exactly_one_crawl_proceed():
    fetcher = SiteFetcher({SEED: [img("http://example.com/a.png")]})
    crawler = ImageCrawler(fetcher, CountingPipeline(default=1), max_depth=1)
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        value = crawler.crawl(SEED, 1)
        with lock:
            results.append(value)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [0] * 7 + [1]
    assert fetcher.fetched == [SEED]


def _tree_site():
    return {
        SEED: [link("http://example.com/a"), link("http://example.com/b"), img("http://example.com/0.png")],
        "http://example.com/a": [link("http://example.com/a/1"), img("http://example.com/a.png")],
        "http://example.com/b": [img("http://example.com/b1.png"), img("http://example.com/b2.png"), link("http://example.com/missing")],
        "http://example.com/a/1": [img("http://example.com/a1.png"), link("http://example.com/a/1/deep")],
        "http://example.com/a/1/deep": [img("http://example.com/deep.png")],
    }


@pytest.mark.parametrize("max_depth", [0, 1, 2, 3, 4])
def test_threaded_crawler_agrees_with_sequential(max_depth):
    sequential = ImageCrawler(SiteFetcher(_tree_site()), CountingPipeline(default=3), max_depth)
    threaded = ThreadedImageCrawler(
        SiteFetcher(_tree_site()), CountingPipeline(default=3), max_depth, max_workers=3
    )

    assert threaded.crawl(SEED) == sequential.crawl(SEED)
    assert sorted(threaded.uris.snapshot()) == sorted(sequential.uris.snapshot())


def test_threaded_crawler_claims_shared_pages_once():
    shared = "http://example.com/shared"
    site = {
        SEED: [link("http://example.com/a"), link("http://example.com/b")],
        "http://example.com/a": [link(shared)],
        "http://example.com/b": [link(shared)],
        shared: [img("http://example.com/s.png")],
    }
    fetcher = SiteFetcher(site)
    crawler = ThreadedImageCrawler(fetcher, CountingPipeline(default=1), 3, max_workers=4)

    assert crawler.crawl(SEED) == 1
    assert fetcher.fetched.count(shared) == 1


def test_build_crawler_selects_strategy(tmp_path):
    sequential = build_crawler(CrawlConfig(output_root=tmp_path, max_depth=3))
    threaded = build_crawler(
        CrawlConfig(output_root=tmp_path, crawler="threaded", max_workers=2)
    )

    assert type(sequential) is ImageCrawler
    assert isinstance(sequential.fetcher, HttpPageFetcher)
    assert sequential.max_depth == 3
    assert isinstance(threaded, ThreadedImageCrawler)
    assert threaded.max_workers == 2


def test_run_crawler_over_local_site(tmp_path, png_bytes):
    site = tmp_path / "site"
    (site / "sub").mkdir(parents=True)
    (site / "cat.png").write_bytes(png_bytes)
    (site / "sub" / "dog.png").write_bytes(png_bytes)
    (site / "index.html").write_text(
        '<a href="sub/page.html">sub</a><img src="cat.png"><img src="missing.png">'
    )
    (site / "sub" / "page.html").write_text(
        '<img src="dog.png"><a href="../index.html">home</a>'
    )

    config = CrawlConfig(output_root=tmp_path / "out", max_depth=2)
    summary = run_crawler((site / "index.html").as_uri(), config)

    assert summary.transformed_images == 6
    assert summary.stats.pages_fetched == 2
    assert summary.stats.images_found == 3
    assert len(list((tmp_path / "out" / "transformed" / "SepiaTransform").glob("*-dog.png"))) == 1


class HtmlFetcher:
    """Serves real parsed pages from raw HTML strings."""

    def __init__(self, pages):
        self.pages = pages

    def fetch_page(self, uri):
        html = self.pages.get(uri)
        return None if html is None else Page(uri, html)


@pytest.mark.parametrize("crawler_cls", [ImageCrawler, ThreadedImageCrawler])
def test_malformed_links_do_not_abort_crawl(crawler_cls):
    fetcher = HtmlFetcher({
        SEED: '<img src="/ok.png"><a href="http://example.com:abc/">bad port</a>'
              '<img src="http://[oops/x.png"><a href="/next">next</a>',
        "http://example.com/next": '<img src="/next.png">',
    })
    pipeline = CountingPipeline(default=1)
    crawler = crawler_cls(fetcher, pipeline, 2)

    assert crawler.crawl(SEED) == 2
    assert sorted(pipeline.processed) == ["http://example.com/next.png", "http://example.com/ok.png"]


@pytest.mark.parametrize("strategy", ["sequential", "threaded"])
def test_crawl_absorbs_bad_references_and_oversized_images(tmp_path, monkeypatch, strategy):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    site = tmp_path / "site"
    site.mkdir()
    (site / "cat.png").write_bytes(make_image_bytes(size=(16, 16)))
    (site / "bomb.png").write_bytes(make_image_bytes(size=(64, 64)))
    (site / "notes.png").write_bytes(b"not really a png " * 10)
    (site / "index.html").write_text(
        '<img src="cat.png"><img src="bomb.png"><img src="notes.png">'
        '<a href="http://example.com:abc/">bad port</a>'
        '<img src="http://[oops/x.png"><a href="gone.html">gone</a>'
    )

    config = CrawlConfig(output_root=tmp_path / "out", max_depth=2, crawler=strategy)
    summary = run_crawler((site / "index.html").as_uri(), config)

    assert summary.transformed_images == 3
    assert summary.stats.images_found == 3
    assert summary.stats.pages_failed == 1


def test_threaded_crawler_claims_pages_at_shallowest_depth():
    a, c, d = "http://example.com/a", "http://example.com/c", "http://example.com/d"
    site = {
        SEED: [link(a), link(c)],
        a: [link(c)],
        c: [link(d)],
        d: [img("http://example.com/d.png")],
    }
    sequential = ImageCrawler(SiteFetcher(site), CountingPipeline(default=1), 3)
    threaded = ThreadedImageCrawler(SiteFetcher(site), CountingPipeline(default=1), 3, max_workers=1)

    # Depth-first reaches c through a at depth 3, so d falls outside the bound.
    assert sequential.crawl(SEED) == 0
    # The pool expands c from the seed at depth 2 first.
    assert threaded.crawl(SEED) == 1


def test_redirect_target_is_claimed():
    old, new = "http://example.com/old", "http://example.com/new"
    fetcher = SiteFetcher(
        {SEED: [link(old), link(new)], new: [img("http://example.com/n.png")]},
        redirects={old: new},
    )
    crawler = ImageCrawler(fetcher, CountingPipeline(default=1), 2)

    assert crawler.crawl(SEED) == 1
    assert fetcher.fetched == [SEED, old]
    assert new in crawler.uris


def test_redirect_to_visited_page_contributes_zero():
    old, new = "http://example.com/old", "http://example.com/new"
    fetcher = SiteFetcher(
        {SEED: [link(new), link(old)], new: [img("http://example.com/n.png")]},
        redirects={old: new},
    )
    pipeline = CountingPipeline(default=1)
    crawler = ImageCrawler(fetcher, pipeline, 2)

    assert crawler.crawl(SEED) == 1
    assert fetcher.fetched == [SEED, new, old]
    assert pipeline.processed == ["http://example.com/n.png"]
