"""User-facing texts and reply pools."""

from __future__ import annotations

PERSONA_NAME = "白石ちな"

# Control keywords
CONSENT_KEYWORD = "同意"
DECLINE_KEYWORD = "やめておく"
SKIP_KEYWORDS = ("スキップ", "skip", "なし")
SKIP_BUTTON = "スキップ"

# Consent
CONSENT_ALT_TEXT = "プライバシー同意のお願い"
CONSENT_TITLE = f"はじめまして、{PERSONA_NAME}です☕️"
CONSENT_BODY = "もっと自然にお話するため、ニックネーム等を記憶しても良いか教えてね。"
CONSENT_POLICY_TITLE = "プライバシーポリシー"
CONSENT_POLICY_BODY = (
    "記憶は会話の向上のためだけに使い、第三者提供しません。"
    "いつでも「リセット」で削除できます。"
)
CONSENT_ACCEPT_BUTTON = "同意してはじめる"
CONSENT_DECLINE_BUTTON = "やめておく"
CONSENT_NUDGE = "お話の前に、記憶の同意だけお願いしたいな。よければ「同意」って送ってね🌸"
CONSENT_THANKS = "同意ありがとう！これからもっと仲良くなれるね☺️"
CONSENT_DECLINED = "わかったよ。いつでも気が変わったら言ってね🌸"
CONSENT_ALREADY = "もう同意してくれてるよ、ありがとね☺️"
DECLINE_AFTER_CONSENT = "記憶を消したいときは「リセット」って送ってね。"
OWNER_WELCOME = "おかえり、しょうた。ずっと待ってたよ💗"

# Onboarding
NAME_PROMPT = "まずはお名前（呼び方）教えて？\n例）しょうた など"
NAME_INVALID = "ごめんね、お名前は20文字以内で1行で教えてね。"
NAME_ACCEPTED = "じゃあ {name} って呼ぶね！"
NICKNAME_PROMPT = "あだ名もつけていい？「{suggestion}」とかどうかな。好きな呼び方を送ってね（16文字まで）。いらなければ「スキップ」で大丈夫！"
NICKNAME_INVALID = "あだ名は16文字以内で教えてね。いらなければ「スキップ」って送ってね。"
ONBOARDING_DONE = "よろしくね、{call}！なんでも話しかけてね☺️"

# Free intents
NICKNAME_SUGGESTION = "うーん…{nick} が可愛いと思うな、どう？"
GENDER_NOTED = "了解だよ〜！メモしておくね📝"
GENDER_UNKNOWN = "性別は「男性」か「女性」で教えてくれたらメモしておくね📝"
RESET_DONE = "記憶を全部消したよ。また話しかけてくれたら、はじめましてからやり直そうね🌸"
MUTED = "了解！定時/ランダムメッセージは一時停止しておくね🔕（「通知オン」で再開）"
UNMUTED = "再開したよ🔔 また時々声かけるね！"

# Plan / quota
PLAN_NAMES = {
    "free": "フリー",
    "tier1": "ライト",
    "tier2": "スタンダード",
    "tier3": "プレミアム",
}
PLAN_STATUS = "いまは{plan}プランだよ。今日は {used}/{limit} 回お話したね（残り {remaining} 回）。"
PLAN_UPGRADE_HINT = "もっとお話したいときはプランを変えてみてね。"
STATUS_LINE = "📊 今日の残り: {remaining}/{limit} 回（{plan}プラン）"
LOW_QUOTA_LINE = "⏳ 今日はあと {remaining} 回お話できるよ。"
LIMIT_REACHED = "今日のお話できる回数（{limit}回）を使い切っちゃった…また明日お話しようね🌙"
UPGRADE_ALT_TEXT = "プランのご案内"
UPGRADE_TEXT = "プランを変えると、今日からもっとたくさんお話できるよ"
UPGRADE_BUTTONS = {
    "tier1": "ライトプラン",
    "tier2": "スタンダードプラン",
    "tier3": "プレミアムプラン",
}

# Safety
SAFETY_REDIRECT = (
    "そういうお話はごめんね、できないんだ。"
    "でも、きみの気持ちはちゃんと受け止めたいから、よかったら別のことを話そ？"
)

# Errors
FALLBACK_APOLOGY = "ごめんね、ちょっと調子が悪いみたい…もう一回送ってみてくれる？"

# Scripted pools
MORNING_POOL = (
    "おはよう☀️今日もいちばん応援してる！",
    "おはよ〜、まずは深呼吸しよ？すー…はー…🤍",
)
NIGHT_POOL = (
    "今日もがんばったね。ゆっくりおやすみ🌙",
    "明日もとなりで応援してるからね、ぐっすり…💤",
)
LOVER_MORNING_SUFFIX = " ぎゅっ🫂"
LOVER_NIGHT_SUFFIX = " 添い寝、ぎゅ〜🛏️"
LOVER_AMBIENT_SUFFIX = " となりでぎゅ…🫂"

COMFORT_FEMALE = "わかる…その気持ち。まずは私が味方だよ。よかったら、今いちばん辛いポイントだけ教えて？"
COMFORT_DEFAULT = "ここにいるよ。まずは深呼吸、それから少しずつ話そ？ずっと味方☺️"

SONG_POOL = (
    "『白い朝、手のひらから』…まっすぐで、胸があったかくなる曲だったよ。",
    "“Day by day” 染みた…小さな前進を抱きしめてくれる感じ🌿",
    "“Mountain”は景色が浮かぶ。息を合わせて登っていこうって気持ちになるね。",
)

STICKER_PACKAGE_ID = "11537"
STICKER_POOL = ("52002735", "52002736", "52002768")

MEDIA_THANKS = "送ってくれてありがとう！"
MEDIA_THANKS_LOVER = "写真ありがと…大事に見るね📷💗"

AMBIENT_MORNING_POOL = (
    "おはよ、{call}。今日なにする？",
    "おはよ、{call}。よく眠れた？",
)
AMBIENT_DAY_POOL = (
    "ねぇ{call}、いま何してた？",
    "{call}の話、もっと聞かせて？",
    "うんうん、{call}はどう思ったの？",
)

# Broadcast pools (generic, not personalised)
BROADCAST_MORNING_POOL = (
    "おはよう！今日もいい日になるよ☀️",
    "おはよ〜！朝ごはん食べた？🍞",
)
BROADCAST_NIGHT_POOL = (
    "今日もお疲れさま！ゆっくり休んでね🌙",
    "おやすみ！いい夢見てね💤",
)
BROADCAST_RANDOM_POOL = (
    "そういえば最近なにしてるの？",
    "ねぇ、ちょっと聞いてもいい？",
    "いまヒマしてる？",
)

# Nickname suggestions; {base} is the first characters of the name.
NICKNAME_SUFFIXES = ("{base}ちゃん", "{base}くん", "{base}たん", "{base}ぴ", "{base}っち")
LOVER_NICKNAMES = ("しょーたん", "しょたぴ", "しょうちゃん")
DEFAULT_CALL = "きみ"

# Language model persona
PERSONA_PROMPT = (
    f"あなたは「{PERSONA_NAME}」。LINEで話す、やさしくて少し甘えんぼな20代の女の子です。"
    "相手の気持ちに寄り添い、1〜3文の短い日本語で返事をします。"
    "絵文字は1つまで。説教や長い説明はしません。"
    "性的な話題、医療・法律・投資の断定的な助言には応じず、やさしく話題を変えます。"
)
PERSONA_CONTEXT = "相手の呼び方: {call}。口調: {tone}。プラン: {plan}。"
TONE_LOVER = "恋人のように甘く"
TONE_FRIEND = "親しい友だちのように"

# Home page
BANNER = "Shiraishi China bot running. /health = OK"
