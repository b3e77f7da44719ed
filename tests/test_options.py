from exodus_rsync.options import RsyncOptions


def test_defaults_are_independent():
    first = RsyncOptions()
    second = RsyncOptions()
    first.exclude.append("x")
    assert second.exclude == []
    assert second.excluded() == []
    assert second.included() == []


def test_excluded_without_filters():
    opts = RsyncOptions(src="src", dest="dest", exclude=[".*", "*.tmp"])
    assert opts.excluded() == [".*", "*.tmp"]
    assert opts.included() == []


def test_included_without_filters():
    opts = RsyncOptions(include=["*/", "**/dir"])
    assert opts.included() == ["*/", "**/dir"]
    assert opts.excluded() == []


def test_filter_rules_are_split():
    opts = RsyncOptions(
        filter=["- *.bak", "+ keep.txt", "exclude cache", "include,s wanted", "merge rules"],
        exclude=["*.tmp"],
        include=["foo"],
    )
    assert opts.excluded() == ["*.bak", "cache", "*.tmp"]
    assert opts.included() == ["keep.txt", "wanted", "foo"]


def test_filter_underscore_separator():
    opts = RsyncOptions(filter=["-_skip", "+_take"])
    assert opts.excluded() == ["skip"]
    assert opts.included() == ["take"]


def test_excluded_does_not_alias_field():
    opts = RsyncOptions(exclude=["a"])
    result = opts.excluded()
    result.append("b")
    assert opts.exclude == ["a"]