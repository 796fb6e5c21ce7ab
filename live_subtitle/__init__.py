"""
Live Subtitle Translate - 即時語音字幕翻譯
直播語音即時辨識、翻譯並推送到 overlay

模組結構：
- config.py         : 環境變數常數與設定檔快照
- errors.py         : 錯誤分類與 Result 型別
- audio.py          : PCM / WAV 轉換
- language.py       : 文字語言偵測
- text_utils.py     : 雜訊 / 幻覺過濾
- prompts.py        : 翻譯方向與系統提示詞
- engine.py         : 辨識引擎監管（共用介面、遠端供應商）
- server_engine.py  : whisper-server 子行程策略
- worker_engine.py  : 行程內 stable-ts 策略
- download.py       : 模型下載
- remote.py         : 遠端語音辨識 API
- llm_client.py     : chat completions 客戶端
- translator.py     : 翻譯請求編排（429 模型輪替）
- broadcast.py      : 字幕廣播
- main.py           : 主程式入口
"""
