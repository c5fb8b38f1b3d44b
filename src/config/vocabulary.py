"""Curated vocabularies for phrase discovery.

This module provides:
1. Domain-relevance terms (a phrase must contain at least one)
2. Stop-words trimmed from phrase edges
3. Banned tokens that disqualify a phrase entirely
4. Technical noise tokens dropped by the normalizer
5. High commercial intent terms for the intent latch
6. Question/advice cues, sentiment lexicon and seasonal keywords
"""

# Terms that make a phrase relevant to handmade / print-on-demand commerce
DOMAIN_TERMS: frozenset[str] = frozenset({
    # Product vocabulary
    "gift", "gifts", "custom", "personalized", "personalised", "handmade",
    "template", "templates", "printable", "printables", "print", "prints",
    "design", "designs", "decor", "craft", "crafts", "diy", "art", "merch",
    "merchandise", "product", "products", "bundle", "bundles", "sticker",
    "stickers", "shirt", "shirts", "tshirt", "mug", "mugs", "poster",
    "posters", "jewelry", "necklace", "earrings", "candle", "candles",
    "planner", "planners", "svg", "clipart", "pattern", "patterns",
    "digital", "download", "wall", "vintage", "wedding", "party",
    "idea", "ideas", "keepsake", "ornament", "ornaments",

    # Marketplace vocabulary
    "etsy", "shop", "shops", "seller", "sellers", "listing", "listings",
    "niche", "niches", "pod", "printful", "printify", "redbubble",
    "shopify", "store", "storefront", "sales", "orders", "pricing",
    "shipping", "tags", "seo", "keyword", "keywords", "trending", "bestseller",
})

# Edge stop-words: a phrase never starts or ends on one of these
STOP_WORDS: frozenset[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "nor", "so", "yet",
    "of", "to", "in", "on", "for", "with", "by", "at", "as", "from", "into",
    "onto", "about", "over", "under", "after", "before", "between", "through",
    "during", "without", "within", "via", "per", "than", "then",
    "is", "are", "was", "were", "be", "been", "being", "am",
    "do", "does", "did", "doing", "done", "have", "has", "had", "having",
    "can", "could", "should", "would", "will", "shall", "may", "might", "must",
    "i", "me", "my", "mine", "we", "us", "our", "ours", "you", "your", "yours",
    "he", "him", "his", "she", "her", "hers", "it", "its", "they", "them",
    "their", "theirs", "this", "that", "these", "those", "there", "here",
    "what", "which", "who", "whom", "whose", "when", "where", "why", "how",
    "if", "because", "while", "just", "also", "very", "really", "too",
    "some", "any", "all", "each", "every", "other", "such", "more", "most",
    "much", "many", "few", "own", "same", "not", "no", "only", "even",
    "again", "already", "still", "ever", "never", "anyone", "someone",
    "something", "anything", "everything", "get", "got", "getting",
    "im", "ive", "dont", "doesnt", "didnt", "cant", "wont", "isnt", "thats",
})

# Tokens that disqualify a phrase (platform chatter, moderation, adult spam)
BANNED_TOKENS: frozenset[str] = frozenset({
    "nsfw", "porn", "onlyfans", "sex", "xxx", "nude", "nudes",
    "karma", "upvote", "upvotes", "downvote", "downvotes", "subreddit",
    "mod", "mods", "moderator", "removed", "deleted", "crosspost",
    "reddit", "redditor", "redditors", "edit", "update", "tldr",
    "scam", "spam", "giveaway", "promo", "referral",
})

# Markup / URL / id-like artifacts that survive character stripping
NOISE_TOKENS: frozenset[str] = frozenset({
    "http", "https", "www", "com", "org", "net", "io", "html", "htm", "php",
    "jpg", "jpeg", "png", "gif", "gifv", "webp", "mp4", "svgz",
    "amp", "nbsp", "quot", "apos", "lt", "gt",
    "utm", "ref", "src", "href", "srcset", "rel", "nofollow",
    "token", "cdn", "img", "imgur", "redd", "preview", "thumbnail",
    "width", "height", "px", "format", "auto", "crop", "uid", "sid",
    "query", "param", "params", "id", "ids",
})

# High commercial intent: any of these in a phrase ratchets its intent boost
INTENT_TERMS: frozenset[str] = frozenset({
    "best", "custom", "gift", "gifts", "template", "templates", "bundle",
    "bundles", "personalized", "personalised", "printable", "buy", "cheap",
    "affordable", "sale", "discount", "deal", "deals", "order", "shop",
    "bestseller", "premium", "unique",
})

# Leading cues that make a post read as a question or advice request
QUESTION_CUES: tuple[str, ...] = (
    "how", "what", "which", "where", "why", "when", "who", "should",
    "can", "could", "would", "is", "are", "does", "do", "any", "anyone",
    "advice", "help", "recommend", "recommendation", "recommendations",
    "suggestions", "tips", "looking for", "need help", "eli5",
)

# Sentiment lexicon
POSITIVE_WORDS: frozenset[str] = frozenset({
    "love", "excellent", "amazing", "best", "great", "awesome", "perfect",
    "fantastic", "wonderful", "brilliant", "outstanding", "superb",
    "impressive", "good", "nice", "helpful", "recommend", "success",
    "profitable", "easy", "beautiful", "quality", "top", "favorite", "glad",
    "thank", "thanks", "working", "win", "winning", "trending", "hot",
    "viral", "popular", "selling", "gorgeous", "stunning", "unique",
})

NEGATIVE_WORDS: frozenset[str] = frozenset({
    "bad", "worst", "terrible", "awful", "horrible", "poor", "disappointing",
    "useless", "waste", "scam", "fraud", "fake", "difficult", "hard",
    "confusing", "frustrating", "problem", "issue", "broken", "fail",
    "failed", "failing", "sucks", "hate", "avoid", "warning", "beware",
    "never", "complaint", "dead", "overpriced", "ugly", "tacky",
})

INTENSIFIERS: frozenset[str] = frozenset({
    "very", "extremely", "really", "super", "absolutely", "totally", "completely",
})

# Seasonal keywords: months the season peaks and days of lead time before it
SEASONAL_KEYWORDS: dict[str, dict[str, object]] = {
    "christmas": {"months": [11, 12], "lead_time_days": 60},
    "halloween": {"months": [10], "lead_time_days": 45},
    "valentine": {"months": [2], "lead_time_days": 30},
    "mothers day": {"months": [5], "lead_time_days": 30},
    "fathers day": {"months": [6], "lead_time_days": 30},
    "easter": {"months": [3, 4], "lead_time_days": 30},
    "summer": {"months": [6, 7, 8], "lead_time_days": 60},
    "fall": {"months": [9, 10, 11], "lead_time_days": 45},
    "spring": {"months": [3, 4, 5], "lead_time_days": 45},
    "winter": {"months": [12, 1, 2], "lead_time_days": 45},
}

# Subreddits scanned when none are configured
DEFAULT_SUBREDDITS: list[str] = ["EtsySellers", "Etsy"]
