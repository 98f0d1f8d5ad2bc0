from services.worker.textutil import render_markdown, word_count


def test_word_count_ignores_digits_and_punctuation():
    assert word_count("Hello, world! It's a well-known fact: 42 is 6 x 7.") == 8
    assert word_count("") == 0
    assert word_count(None) == 0


def test_markdown_renders_on_one_line():
    html = render_markdown("# Title\n\nSome **bold** text\n\n- a\n- b")
    assert "\n" not in html
    assert "<h1>Title</h1>" in html and "<strong>bold</strong>" in html and "<li>a</li>" in html
