"""Tooling for plugin marketplace skill corpora.

A corpus is a repository laid out as::

    .claude-plugin/marketplace.json
    plugins/<plugin>/.claude-plugin/plugin.json
    plugins/<plugin>/skills/<skill>/SKILL.md
    plugins/<plugin>/skills/<skill>/references/*.md

This package loads such a tree, catalogs its skills and reference documents,
lints it for broken links and bad front-matter, and scaffolds new entries.

Security model:
- Skills are data only (Markdown + YAML front-matter). Nothing is executed.
- Remote marketplaces are staged, scanned and linted, never installed.
"""

__version__ = "0.1.0"
