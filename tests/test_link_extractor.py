import unittest

from inquire.parse.extractor import LinkExtractor


class LinkExtractorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.extractor = LinkExtractor()

    def test_extract_filters_and_normalizes_links(self) -> None:
        html = """
        <a href="page1.html">Relative</a>
        <a href='/abs/path'>Absolute Path</a>
        <a href="//github.com/other/repo">Schemaless</a>
        <a href="page1.html#section">Fragment</a>
        <a href="javascript:void(0)">JS</a>
        <a href="#skip">Skip</a>
        <a href="mailto:dev@example.com">Email</a>
        <a href="tel:123">Phone</a>
        <a href=" HTTP://EXAMPLE.COM/Mixed ">Mixed Case</a>
        <a href=page2.html>Unquoted</a>
        <a href="ftp://files.example.com/x">FTP</a>
        """
        base_url = "https://github.com/org/repo/"

        links = self.extractor.extract(html, base_url)

        expected = [
            "https://github.com/org/repo/page1.html",
            "https://github.com/abs/path",
            "https://github.com/other/repo",
            "http://example.com/Mixed",
            "https://github.com/org/repo/page2.html",
        ]

        self.assertEqual(expected, links)

    def test_extract_handles_duplicate_urls(self) -> None:
        html = """
        <a href="https://example.com/a">First</a>
        <a href="https://example.com/a#fragment">Duplicate with fragment</a>
        <a href="https://example.com/a?utm=1">Duplicate with query</a>
        <a href="https://example.com/a">Duplicate exact</a>
        """

        links = self.extractor.extract(html, "https://example.com/index")

        self.assertEqual(["https://example.com/a"], links)

    def test_attributes_ending_in_href_are_ignored(self) -> None:
        html = """
        <a data-href="/x" href="/y">y</a>
        <a class="nav" data-href="/z">no href</a>
        <a
           title="t"
           href="/w">multiline</a>
        """

        links = self.extractor.extract(html, "http://x.test/")

        self.assertEqual(["http://x.test/y", "http://x.test/w"], links)

    def test_keep_query(self) -> None:
        html = '<a href="/search?q=python&amp;page=2">Search</a>'

        links = LinkExtractor(keep_query=True).extract(html, "https://example.com/")

        self.assertEqual(["https://example.com/search?page=2&q=python"], links)

    def test_empty_input(self) -> None:
        self.assertEqual([], self.extractor.extract("", "https://example.com/"))
        self.assertEqual([], self.extractor.extract("<p>no links</p>", "https://example.com/"))


if __name__ == "__main__":
    unittest.main()
