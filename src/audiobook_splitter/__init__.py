"""Audiobook Splitter -- validate chapter lists and cut audiobooks into tagged per-chapter files.

Core modules:
    config          -- Splitter configuration via pydantic-settings (.env + env vars)
    cli             -- Click CLI (`audiobook-split split|validate`). CLI flags passed as
                       kwargs to SplitterConfig (no env pollution).
    orchestrator    -- PREFLIGHT -> PREPARE -> EXECUTE -> AGGREGATE state machine
    validator       -- Pure chapter checks: order, overlap, timing, gaps, title cleanup
    sanitize        -- Filename sanitization and chapter file naming
    cutter          -- ffmpeg stream-copy cuts with timeout and progress parsing
    ffprobe         -- Audio inspection and embedded chapter extraction via ffprobe
    tagger          -- mutagen ID3/MP4 tagging with CHAP/CTOC chapter markers
    concurrency     -- Batch width, sequential batches, output lock, disk space
    processed_store -- JSON log of inputs already split
    artifacts       -- M3U playlist and JSON chapter index
"""
