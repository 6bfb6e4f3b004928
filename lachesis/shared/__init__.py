"""Pure text helpers shared by the engine and the workflow parsers."""
