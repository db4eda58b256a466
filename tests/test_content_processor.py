import io
import json
import random
import unittest
from datetime import timedelta
from unittest import mock

from PIL import Image

from autoposter.ai.rate_limiter import RateLimiter
from autoposter.ai.translator import Translator
from autoposter.config import ConfigurationError
from autoposter.extraction.article import ArticleContent, ExtractionError
from autoposter.processing.content_processor import (
    ContentProcessor,
    ContentValidationError,
    ImportNotFoundError,
    LockUnavailableError,
)
from autoposter.storage.records import ContentStyle, STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING
from fakes import Clock, FakeStore, FakeTextGenerator, http_response, http_session

IMAGE_URL = "https://cdn.example.com/photos/tram.png"

SOURCE = ArticleContent(
    title="Council approves transit plan",
    content="<p>" + "The council approved three new tram lines after a long debate. " * 5 + "</p>",
    excerpt="The council approved three new tram lines.",
    featured_image=IMAGE_URL,
    author="Ana Horvat",
)


def translated_reply(title="Vijeće odobrilo plan prijevoza"):
    return json.dumps(
        {
            "title": title,
            "content": "<p>" + "Gradsko vijeće odobrilo je tri nove tramvajske linije nakon duge rasprave. " * 3 + "</p>",
            "excerpt": "Vijeće je izglasalo tri nove tramvajske linije.",
            "seo": {
                "meta_title": "Plan prijevoza odobren",
                "meta_description": "Gradsko vijeće odobrilo je tri nove tramvajske linije.",
                "keywords": ["tramvaj", "prijevoz"],
            },
        }
    )


def png_bytes(width=2400, height=1200):
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), (200, 30, 30, 255)).save(buf, format="PNG")
    return buf.getvalue()


class ProcessorTestCase(unittest.TestCase):
    def setUp(self):
        self.store = FakeStore()
        self.clock = Clock()
        self.extractor = mock.Mock()
        self.extractor.fetch_article_content.return_value = SOURCE
        self.generator = FakeTextGenerator([translated_reply() for _ in range(10)])
        self.translator = Translator(self.generator, sleep=lambda s: None)
        self.images = http_session({IMAGE_URL: http_response(png_bytes())})

    def processor(self, owner_id="proc_test", **kwargs):
        return ContentProcessor(
            self.store,
            self.extractor,
            self.translator,
            RateLimiter(max_concurrent=2, min_interval=0),
            owner_id=owner_id,
            now=self.clock,
            image_session=self.images,
            rng=random.Random(7),
            **kwargs,
        )

    def add_pending(self, **feed_kwargs):
        feed_kwargs.setdefault("category_id", 11)
        feed_kwargs.setdefault("tag_ids", [21, 22])
        feed = self.store.add_feed(**feed_kwargs)
        record = self.store.add_import(feed_id=feed.id, original_url="https://news.example.com/transit")
        return feed, record


class TestContentProcessorPipeline(ProcessorTestCase):
    def test_happy_path_creates_published_post(self):
        _, record = self.add_pending(auto_publish="published")
        result = self.processor().process_pending_batch(5)

        self.assertEqual((result.processed, result.successful, result.failed), (1, 1, 0))
        self.assertEqual(len(self.store.posts), 1)
        post_id, post = next(iter(self.store.posts.items()))
        self.assertEqual(post["title"], "Vijeće odobrilo plan prijevoza")
        self.assertEqual(post["slug"], "vijece-odobrilo-plan-prijevoza")
        self.assertEqual(post["status"], "published")
        self.assertEqual(post["published_at"], self.clock())
        self.assertEqual(post["category_ids"], [11])
        self.assertEqual(post["tag_ids"], [21, 22])
        self.assertEqual(post["locale"], "hr")
        self.assertEqual(post["source_url"], "https://news.example.com/transit")
        self.assertEqual(post["meta"]["keywords"], ["tramvaj", "prijevoz"])
        self.assertLessEqual(len(post["excerpt"]), 300)

        self.assertIsNotNone(post["hero_image_id"])
        self.assertEqual(post["meta"]["image"], post["hero_image_id"])
        media = self.store.media[post["hero_image_id"]]
        self.assertEqual(media["mime_type"], "image/jpeg")
        self.assertEqual(media["filename"], "tram.jpg")
        stored = Image.open(io.BytesIO(media["data"]))
        self.assertEqual((stored.format, stored.size), ("JPEG", (1200, 600)))

        saved = self.store.imports[record.id]
        self.assertEqual(saved.status, STATUS_COMPLETED)
        self.assertEqual(saved.post_id, post_id)
        self.assertEqual(saved.translation_tokens, 100)
        self.assertEqual(saved.processed_at, self.clock())
        self.assertIsNone(saved.locked_at)
        self.assertIsNone(saved.locked_by)

    def test_scheduled_post_gets_future_publish_date(self):
        self.add_pending(auto_publish="scheduled")
        self.processor().process_pending_batch(5)
        post = next(iter(self.store.posts.values()))
        self.assertEqual(post["status"], "draft")
        delta = post["published_at"] - self.clock()
        self.assertEqual(delta.total_seconds() % 3600, 0)
        self.assertTrue(timedelta(hours=1) <= delta <= timedelta(hours=48))

    def test_draft_post_has_no_publish_date(self):
        self.add_pending(auto_publish="draft")
        self.processor().process_pending_batch(5)
        post = next(iter(self.store.posts.values()))
        self.assertEqual(post["status"], "draft")
        self.assertIsNone(post["published_at"])

    def test_untranslated_feed_passes_content_through(self):
        self.add_pending(translate_content=False)
        self.processor().process_pending_batch(5)
        post = next(iter(self.store.posts.values()))
        self.assertEqual(post["title"], SOURCE.title)
        self.assertEqual(post["content"], SOURCE.content)
        self.assertEqual(post["meta"]["title"], SOURCE.title[:60])
        self.assertEqual(post["meta"]["keywords"], [])
        self.assertEqual(self.generator.prompts, [])
        self.assertEqual(next(iter(self.store.imports.values())).translation_tokens, 0)

    def test_record_content_style_is_used(self):
        self.store.styles["short"] = ContentStyle(key="short", prompt="Keep it under 200 words.", max_tokens=1500)
        self.add_pending()
        self.processor().process_pending_batch(5)
        self.assertIn("Keep it under 200 words.", self.generator.prompts[0])
        self.assertEqual(self.generator.max_tokens, [1500])

    def test_slug_is_made_unique(self):
        self.store.posts[900] = {"slug": "vijece-odobrilo-plan-prijevoza"}
        self.store.posts[901] = {"slug": "vijece-odobrilo-plan-prijevoza-1"}
        self.add_pending()
        self.processor().process_pending_batch(5)
        slugs = sorted(p["slug"] for p in self.store.posts.values())
        self.assertIn("vijece-odobrilo-plan-prijevoza-2", slugs)

    def test_image_failure_is_swallowed(self):
        self.images = http_session({IMAGE_URL: http_response(status=404, reason="Not Found")})
        self.add_pending()
        result = self.processor().process_pending_batch(5)
        self.assertEqual(result.successful, 1)
        post = next(iter(self.store.posts.values()))
        self.assertIsNone(post["hero_image_id"])
        self.assertEqual(self.store.media, {})

    def test_metadata_media_is_used_without_og_image(self):
        self.extractor.fetch_article_content.return_value = ArticleContent(
            title=SOURCE.title, content=SOURCE.content, excerpt=SOURCE.excerpt
        )
        feed = self.store.add_feed()
        self.store.add_import(feed_id=feed.id, metadata={"media": IMAGE_URL})
        self.processor().process_pending_batch(5)
        self.assertEqual(len(self.store.media), 1)


class TestContentProcessorFailures(ProcessorTestCase):
    def test_validation_gate_blocks_short_content(self):
        self.extractor.fetch_article_content.return_value = ArticleContent(
            title="Short", content="<p>Too short.</p>", excerpt="Short"
        )
        _, record = self.add_pending(translate_content=False)
        result = self.processor().process_pending_batch(5)

        self.assertEqual((result.processed, result.failed), (1, 1))
        self.assertIn("Content validation failed", result.errors[0]["error"])
        self.assertEqual(self.store.posts, {})
        saved = self.store.imports[record.id]
        self.assertEqual((saved.status, saved.retry_count), (STATUS_PENDING, 1))
        self.assertIn("Content is too short", saved.error_message)

    def test_validation_error_type(self):
        self.extractor.fetch_article_content.return_value = ArticleContent(title="", content="", excerpt="")
        _, record = self.add_pending(translate_content=False)
        with self.assertRaises(ContentValidationError):
            self.processor().process_imported_post(record.id)
        self.assertEqual(self.store.posts, {})

    def test_retry_ceiling_marks_record_failed(self):
        self.extractor.fetch_article_content.side_effect = ExtractionError("HTTP 500: Server Error")
        _, record = self.add_pending()
        processor = self.processor()

        for expected in (1, 2):
            processor.process_pending_batch(5)
            saved = self.store.imports[record.id]
            self.assertEqual((saved.status, saved.retry_count), (STATUS_PENDING, expected))

        processor.process_pending_batch(5)
        saved = self.store.imports[record.id]
        self.assertEqual((saved.status, saved.retry_count), (STATUS_FAILED, 3))
        self.assertEqual(saved.error_message, "HTTP 500: Server Error")
        self.assertEqual(saved.processed_at, self.clock())

        self.assertEqual(processor.process_pending_batch(5).processed, 0)
        self.assertEqual(self.store.posts, {})

    def test_lock_is_released_after_failure(self):
        self.extractor.fetch_article_content.side_effect = ExtractionError("boom")
        _, record = self.add_pending()
        self.processor().process_pending_batch(5)
        saved = self.store.imports[record.id]
        self.assertIsNone(saved.locked_at)
        self.assertIsNone(saved.locked_by)

    def test_missing_feed_fails_fast(self):
        record = self.store.add_import(feed_id=4242)
        with self.assertRaises(ConfigurationError):
            self.processor().process_imported_post(record.id)
        self.extractor.fetch_article_content.assert_not_called()

    def test_missing_record(self):
        with self.assertRaises(ImportNotFoundError):
            self.processor().process_imported_post(12345)

    def test_bookkeeping_errors_do_not_escape_batch(self):
        self.extractor.fetch_article_content.side_effect = ExtractionError("boom")
        self.add_pending()
        original_get = self.store.get_import
        calls = {"n": 0}

        def flaky_get(import_id):
            calls["n"] += 1
            # acquire_lock, process_imported_post, then the retry bookkeeping read
            if calls["n"] >= 3:
                raise RuntimeError("store went away")
            return original_get(import_id)

        self.store.get_import = flaky_get
        result = self.processor().process_pending_batch(5)
        self.assertEqual(result.failed, 1)


class TestLocking(ProcessorTestCase):
    def test_valid_lock_excludes_other_workers(self):
        _, record = self.add_pending()
        first = self.processor(owner_id="proc_a")
        second = self.processor(owner_id="proc_b")

        self.assertTrue(first.acquire_lock(record.id))
        self.assertTrue(first.acquire_lock(record.id))
        self.assertFalse(second.acquire_lock(record.id))

        self.clock.advance(minutes=4, seconds=59)
        self.assertFalse(second.acquire_lock(record.id))

        self.clock.advance(seconds=1)
        self.assertTrue(second.acquire_lock(record.id))
        self.assertEqual(self.store.imports[record.id].locked_by, "proc_b")

    def test_batch_skips_locked_records_without_counting(self):
        _, record = self.add_pending()
        self.store.imports[record.id].locked_at = self.clock() - timedelta(minutes=1)
        self.store.imports[record.id].locked_by = "proc_other"

        processor = self.processor()
        # The store query already filters fresh locks; a record locked after selection is skipped too
        with mock.patch.object(self.store, "find_pending_imports", return_value=[self.store.get_import(record.id)]):
            result = processor.process_pending_batch(5)

        self.assertEqual((result.processed, result.successful, result.failed), (0, 0, 0))
        self.assertEqual(self.store.imports[record.id].locked_by, "proc_other")
        self.assertEqual(self.store.posts, {})

    def test_expired_lock_is_taken_over_by_batch(self):
        _, record = self.add_pending()
        self.store.imports[record.id].locked_at = self.clock() - timedelta(minutes=6)
        self.store.imports[record.id].locked_by = "proc_crashed"

        result = self.processor().process_pending_batch(5)
        self.assertEqual(result.successful, 1)
        self.assertEqual(self.store.imports[record.id].status, STATUS_COMPLETED)

    def test_record_abandoned_mid_processing_is_recovered(self):
        _, record = self.add_pending()
        # Worker killed after marking the record processing, lock never released
        self.store.imports[record.id].status = STATUS_PROCESSING
        self.store.imports[record.id].locked_at = self.clock() - timedelta(hours=2)
        self.store.imports[record.id].locked_by = "proc_dead"

        result = self.processor().process_pending_batch(5)
        self.assertEqual((result.processed, result.successful), (1, 1))
        self.assertEqual(self.store.imports[record.id].status, STATUS_COMPLETED)

    def test_processing_record_with_valid_lock_is_left_alone(self):
        _, record = self.add_pending()
        self.store.imports[record.id].status = STATUS_PROCESSING
        self.store.imports[record.id].locked_at = self.clock() - timedelta(minutes=1)
        self.store.imports[record.id].locked_by = "proc_busy"

        result = self.processor().process_pending_batch(5)
        self.assertEqual(result.processed, 0)
        self.assertEqual(self.store.imports[record.id].locked_by, "proc_busy")

    def test_failed_error_bookkeeping_does_not_strand_record(self):
        self.extractor.fetch_article_content.side_effect = [ExtractionError("timeout"), SOURCE]
        _, record = self.add_pending()
        original_update = self.store.update_import
        failures = {"left": 1}

        def flaky_update(import_id, **fields):
            if "retry_count" in fields and failures["left"]:
                failures["left"] -= 1
                raise RuntimeError("store blip")
            return original_update(import_id, **fields)

        self.store.update_import = flaky_update
        processor = self.processor()
        self.assertEqual(processor.process_pending_batch(5).failed, 1)
        self.assertEqual(self.store.imports[record.id].status, STATUS_PROCESSING)

        self.clock.advance(hours=1)
        result = processor.process_pending_batch(5)
        self.assertEqual(result.successful, 1)
        self.assertEqual(self.store.imports[record.id].status, STATUS_COMPLETED)

    def test_process_now(self):
        _, record = self.add_pending()
        self.store.imports[record.id].locked_at = self.clock()
        self.store.imports[record.id].locked_by = "proc_other"
        with self.assertRaises(LockUnavailableError):
            self.processor().process_now(record.id)
        with self.assertRaises(ImportNotFoundError):
            self.processor().process_now(98765)

        self.store.imports[record.id].locked_at = None
        self.store.imports[record.id].locked_by = None
        post_id = self.processor().process_now(record.id)
        self.assertIn(post_id, self.store.posts)
        self.assertIsNone(self.store.imports[record.id].locked_by)

    def test_process_now_records_failure_and_reraises(self):
        self.extractor.fetch_article_content.side_effect = ExtractionError("HTTP 404: Not Found")
        _, record = self.add_pending()
        with self.assertRaises(ExtractionError):
            self.processor().process_now(record.id)
        saved = self.store.imports[record.id]
        self.assertEqual(saved.retry_count, 1)
        self.assertIsNone(saved.locked_at)


if __name__ == "__main__":
    unittest.main()
