# tests/test_providers.py

"""Tests for the marketplace providers using mocked HTTP responses."""

import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from catalog_ingest.providers.alibaba_provider import AlibabaProvider
from catalog_ingest.providers.c1688_provider import C1688Provider
from catalog_ingest.providers.indiamart_provider import IndiaMartProvider
from catalog_ingest.providers.made_in_china_provider import MadeInChinaProvider

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _make_mock_response(fixture_name: str) -> MagicMock:
    """Create a 200 response whose body is a fixture HTML file."""
    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.text = (FIXTURES_DIR / fixture_name).read_text(encoding="utf-8")
    return mock_resp


@patch("catalog_ingest.providers.base_provider.curl_requests.Session")
class TestAlibabaProvider(unittest.TestCase):
    """Card parsing, link canonicalisation and thumbnail upgrade."""

    def _fetch(self, mock_session_cls: MagicMock, limit: int = 2):
        mock_session_cls.return_value.get.return_value = _make_mock_response(
            "alibaba_search.html"
        )
        return AlibabaProvider().fetch("glass bottle", limit)

    def test_cards_parsed(self, mock_session_cls: MagicMock) -> None:
        listings = self._fetch(mock_session_cls)
        self.assertEqual(len(listings), 2)
        first = listings[0]
        self.assertEqual(first.platform, "ALIBABA")
        self.assertEqual(first.title, "Borosilicate Glass Water Bottle 500ml")
        self.assertEqual(first.price_text, "US$ 0.85 - 1.20")
        self.assertEqual(first.moq_text, "Min. order: 500 pieces")
        self.assertEqual(first.store_name, "Hebei Glassware Co., Ltd.")
        self.assertEqual(first.rating, "4.8")

    def test_tracking_query_dropped(self, mock_session_cls: MagicMock) -> None:
        listings = self._fetch(mock_session_cls)
        self.assertEqual(
            listings[0].url,
            "https://www.alibaba.com/product-detail/Glass-Water-Bottle_1600123.html",
        )

    def test_title_from_link_attribute(self, mock_session_cls: MagicMock) -> None:
        listings = self._fetch(mock_session_cls)
        self.assertEqual(listings[1].title, "Amber Glass Dropper Bottle 30ml")

    def test_full_size_images(self, mock_session_cls: MagicMock) -> None:
        listings = self._fetch(mock_session_cls)
        self.assertEqual(listings[0].image, "https://s.alicdn.com/@sc04/kf/Hb1a2.jpg")
        # lazy-loaded data-src wins over the inline placeholder
        self.assertEqual(listings[1].image, "https://s.alicdn.com/@sc04/kf/Hc3d4.jpg")

    def test_search_url(self, mock_session_cls: MagicMock) -> None:
        self._fetch(mock_session_cls, limit=1)
        url = mock_session_cls.return_value.get.call_args.args[0]
        self.assertEqual(
            url,
            "https://www.alibaba.com/trade/search?SearchText=glass+bottle&page=1",
        )

    def test_upgrade_thumbnail_variants(self, mock_session_cls: MagicMock) -> None:
        self.assertEqual(
            AlibabaProvider.upgrade_thumbnail("https://x/H1.png_300x300q80.jpg_.webp"),
            "https://x/H1.png",
        )
        self.assertEqual(
            AlibabaProvider.upgrade_thumbnail("https://x/H1.jpg"), "https://x/H1.jpg"
        )


@patch("catalog_ingest.providers.base_provider.curl_requests.Session")
class TestIndiaMartProvider(unittest.TestCase):
    """IndiaMART cards and directory-redirect links."""

    def _fetch(self, mock_session_cls: MagicMock):
        mock_session_cls.return_value.get.return_value = _make_mock_response(
            "indiamart_search.html"
        )
        return IndiaMartProvider().fetch("coffee mug", 2)

    def test_cards_parsed(self, mock_session_cls: MagicMock) -> None:
        listings = self._fetch(mock_session_cls)
        self.assertEqual(len(listings), 1)
        first = listings[0]
        self.assertEqual(first.title, "Ceramic Coffee Mug 330ml")
        self.assertEqual(first.moq_text, "MOQ: 100 Piece")
        self.assertEqual(first.store_name, "Khurja Pottery Works")
        self.assertEqual(first.description, "Glazed, dishwasher safe")
        self.assertEqual(first.image, "https://5.imimg.com/data5/mug-250x250.jpg")

    def test_impression_params_dropped(self, mock_session_cls: MagicMock) -> None:
        listings = self._fetch(mock_session_cls)
        self.assertEqual(
            listings[0].url,
            "https://www.indiamart.com/proddetail/ceramic-coffee-mug-2349.html",
        )

    def test_directory_redirect_skipped(self, mock_session_cls: MagicMock) -> None:
        titles = [x.title for x in self._fetch(mock_session_cls)]
        self.assertNotIn("Printed Mug", titles)

    def test_redirect_link_has_no_canonical_form(
        self, mock_session_cls: MagicMock
    ) -> None:
        provider = IndiaMartProvider()
        self.assertEqual(provider._canonical_link("/products/?id=881234"), "")


@patch("catalog_ingest.providers.base_provider.curl_requests.Session")
class TestC1688Provider(unittest.TestCase):
    """Inline ``offerList`` extraction when no cards are rendered."""

    def test_offer_list_parsed(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value.get.return_value = _make_mock_response(
            "c1688_search.html"
        )
        listings = C1688Provider().fetch("玻璃杯", 1)
        self.assertEqual(len(listings), 1)
        offer = listings[0]
        self.assertEqual(offer.url, "https://detail.1688.com/offer/6712345.html")
        self.assertEqual(offer.title, "玻璃水杯 加厚")
        self.assertEqual(offer.price_text, "¥3.50")
        self.assertEqual(offer.moq_text, "2件起订")
        self.assertEqual(offer.store_name, "义乌玻璃厂")
        self.assertEqual(offer.image, "https://cbu01.alicdn.com/img/ibank/cup.jpg")

    def test_search_url_encodes_keywords(self, mock_session_cls: MagicMock) -> None:
        url = C1688Provider()._search_url("玻璃杯", 3)
        self.assertTrue(url.startswith("https://s.1688.com/selloffer/offer_search.htm?keywords=%E7%8E%BB"))
        self.assertTrue(url.endswith("&n=y&beginPage=3"))


@patch("catalog_ingest.providers.base_provider.curl_requests.Session")
class TestMadeInChinaProvider(unittest.TestCase):
    """Legacy card layouts and slug search URLs."""

    def test_cards_parsed(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value.get.return_value = _make_mock_response(
            "made_in_china_search.html"
        )
        listings = MadeInChinaProvider().fetch("vacuum flask", 2)
        self.assertEqual(
            [x.title for x in listings],
            ["Stainless Steel Vacuum Flask", "Double Wall Tumbler"],
        )
        self.assertEqual(listings[0].moq_text, "100 Pieces (MOQ)")
        self.assertEqual(listings[0].image, "https://image.made-in-china.com/flask.jpg")

    def test_search_url_pages(self, mock_session_cls: MagicMock) -> None:
        provider = MadeInChinaProvider()
        self.assertEqual(
            provider._search_url("vacuum flask", 1),
            "https://www.made-in-china.com/products-search/"
            "hot-china-products/vacuum_flask.html",
        )
        self.assertTrue(
            provider._search_url("vacuum flask", 2).endswith("vacuum_flask_2.html")
        )


if __name__ == "__main__":
    unittest.main()
