"""
Services layer for CreativeTracker.

The creative_intelligence package holds the analytics engine; callers
build a Supabase client and pass it into each analyzer.
"""
