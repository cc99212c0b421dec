import pytest

from pullstream import from_collection, from_coroutine, from_range


class TestPaginationChunking:
    """Test pagination and chunking over lazy pipelines"""

    def test_basic_pagination_with_skip_take(self):
        """Test basic pagination using skip and take"""
        data = list(range(100))
        page_size = 10

        page1 = from_collection(data).skip(0).take(page_size).to_list()
        assert page1 == list(range(0, 10)), f"Page 1 failed: {page1}"

        page3 = from_collection(data).skip(20).take(page_size).to_list()
        assert page3 == list(range(20, 30)), f"Page 3 failed: {page3}"

        assert from_collection(data).page(3, page_size).to_list() == page3

    def test_pagination_with_filtering(self):
        """Test pagination on filtered data"""
        evens = from_range(0, 99).filter(lambda x: x % 2 == 0)

        even_page1 = evens.page(1, 5).to_list()
        even_page2 = evens.page(2, 5).to_list()

        assert even_page1 == [0, 2, 4, 6, 8], f"Even page 1 failed: {even_page1}"
        assert even_page2 == [10, 12, 14, 16, 18], f"Even page 2 failed: {even_page2}"

    def test_batch_processing(self):
        """Test batch processing with batch()"""
        batches = from_range(0, 24).batch(5).to_list()

        expected_batches = [
            (0, 1, 2, 3, 4),
            (5, 6, 7, 8, 9),
            (10, 11, 12, 13, 14),
            (15, 16, 17, 18, 19),
            (20, 21, 22, 23, 24),
        ]
        assert batches == expected_batches, f"Batches failed: {batches}"

    def test_chunking_with_transformations(self):
        """Test chunking with data transformations"""
        chunks = from_range(0, 9).map(lambda x: x * x).chunk(5).to_list()

        assert chunks[0] == (0, 1, 4, 9, 16), f"Chunk 1 failed: {chunks[0]}"
        assert chunks[1] == (25, 36, 49, 64, 81), f"Chunk 2 failed: {chunks[1]}"

    def test_large_dataset_pagination(self):
        """Test pagination efficiency with large datasets"""
        page_size = 1000
        touched = []

        def doubled(x):
            touched.append(x)
            return x * 2

        middle_page = (
            from_range(0)
            .map(doubled)
            .skip(50000)
            .take(page_size)
            .to_list()
        )

        assert len(middle_page) == page_size, f"Expected {page_size} items, got {len(middle_page)}"
        assert middle_page[0] == 100000, f"First item should be 100000, got {middle_page[0]}"
        assert middle_page[-1] == 101998, f"Last item should be 101998, got {middle_page[-1]}"
        assert len(touched) == 51000, "an unbounded source must only be read up to the page"

    def test_pagination_with_empty_pages(self):
        """Test pagination behavior past the end of the data"""
        assert from_range(0, 9).page(3, 10).to_list() == []
        assert from_range(0, 9).skip(5).take(10).to_list() == [5, 6, 7, 8, 9]

    def test_batching_a_generator_closes_it_when_bounded(self, cleanup_log, counting_source):
        """Test batching an endless generator under take"""
        batches = from_coroutine(counting_source).batch(3).take(2).to_list()

        assert batches == [(0, 1, 2), (3, 4, 5)]
        assert counting_source.pulls == [0, 1, 2, 3, 4, 5]
        assert cleanup_log == ["numbers"]

    @pytest.mark.parametrize("page_number,expected", [
        (1, [1, 2, 3, 4]),
        (2, [5, 6, 7, 8]),
        (3, [9, 10]),
        (4, []),
    ])
    def test_page_numbers(self, page_number, expected):
        """Test each page of a short source"""
        assert from_range(1, 10).page(page_number, 4).to_list() == expected
