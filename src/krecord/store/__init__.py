"""File-based content store for diaries, sheets and their relations.

Layout:
    <data root>/
    ├── content/
    │   └── 2024/
    │       └── 202403/
    │           └── 20240305/
    │               ├── 0x1a2b3c-Run.md      # Root diary entry (YAML frontmatter)
    │               ├── children/            # Child entries (parentId set)
    │               ├── imgs/                # Image attachments
    │               ├── video/               # Video attachments
    │               └── files/               # Everything else
    ├── table/
    │   └── weight.csv                       # One CSV per sheet
    └── relations/
        ├── relations.json                   # Row <-> diary index (symmetric)
        └── meta.json                        # Sheet registry

There is no database and no cache: every call re-reads the files it needs.
Older layouts (``dailyReport/``, ``content/post/``, root ``relations.json``,
``table/meta.json``, loose media) are migrated by ``migration.MigrationNormalizer``.
"""
