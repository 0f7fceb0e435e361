"""GrammarMaster quiz engine: catalog, timed attempt sessions, scoring and result history."""
